"""
Adapters – concrete implementations of ports.
Gemini for generation, YouTube for publishing, a JSON file for topic history,
and the moviepy compositor for rendering.
"""

from viraltube.adapters.gemini import (
    GeminiClient,
    GeminiKeySelector,
    GeminiScriptWriter,
    GeminiStoryboard,
    GeminiThumbnailGenerator,
    GeminiTopicDiscovery,
    GeminiVoiceover,
    MediaWriter,
    VeoIntroGenerator,
)
from viraltube.adapters.history import JsonTopicHistory
from viraltube.adapters.youtube import YouTubeCredentialProvider, YouTubePublisher
from viraltube.compositor import Compositor


def default_adapters(**overrides):
    """
    Build default adapter instances (use config).
    Overrides: discovery=..., publisher=..., etc. for testing or a different backend.
    """
    client = overrides.pop("gemini_client", None) or GeminiClient()
    media = MediaWriter()
    selector = GeminiKeySelector(client)

    defaults = {
        "discovery": GeminiTopicDiscovery(client),
        "script_writer": GeminiScriptWriter(client, media),
        "thumbnails": GeminiThumbnailGenerator(client, media),
        "voiceover": GeminiVoiceover(client, media),
        "storyboards": GeminiStoryboard(client, media),
        "intro_video": VeoIntroGenerator(client, media),
        "credentials": YouTubeCredentialProvider(),
        "publisher": YouTubePublisher(),
        "topic_history": JsonTopicHistory(),
        "renderer": Compositor(),
        "key_check": selector.ensure_key,
        "reselect_key": selector.select_key,
    }
    defaults.update(overrides)
    return defaults


__all__ = [
    "Compositor",
    "GeminiClient",
    "GeminiKeySelector",
    "GeminiScriptWriter",
    "GeminiStoryboard",
    "GeminiThumbnailGenerator",
    "GeminiTopicDiscovery",
    "GeminiVoiceover",
    "JsonTopicHistory",
    "MediaWriter",
    "VeoIntroGenerator",
    "YouTubeCredentialProvider",
    "YouTubePublisher",
    "default_adapters",
]
