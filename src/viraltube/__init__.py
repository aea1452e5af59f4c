"""
ViralTube Agent – autonomous research -> script -> assets -> render -> publish pipeline.

  from viraltube.cli import build_controller
  controller = build_controller(autonomous=False)
  await controller.start(manual_topic="Karna")

Collaborators are ports; inject fakes or other backends as keyword overrides
(see viraltube.adapters.default_adapters).
"""

__version__ = "0.3.0"
