"""Compositor – deterministic, timeline-driven audio/video rendering."""

from viraltube.compositor.canvas import FrameCanvas, cover_fit
from viraltube.compositor.renderer import Compositor
from viraltube.compositor.resources import ResourceLoader
from viraltube.compositor.timeline import Layer, Timeline

__all__ = ["Compositor", "FrameCanvas", "Layer", "ResourceLoader", "Timeline", "cover_fit"]
