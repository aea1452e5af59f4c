"""Ports (interfaces) – depend on these, implement in adapters."""

from viraltube.ports.interfaces import (
    ICredentialProvider,
    IIntroVideoGenerator,
    IPublisher,
    IScriptWriter,
    IStoryboardGenerator,
    IThumbnailGenerator,
    ITopicDiscovery,
    ITopicHistory,
    IVideoRenderer,
    IVoiceoverSynthesizer,
    PercentCallback,
    ProgressCallback,
)

__all__ = [
    "ICredentialProvider",
    "IIntroVideoGenerator",
    "IPublisher",
    "IScriptWriter",
    "IStoryboardGenerator",
    "IThumbnailGenerator",
    "ITopicDiscovery",
    "ITopicHistory",
    "IVideoRenderer",
    "IVoiceoverSynthesizer",
    "PercentCallback",
    "ProgressCallback",
]
