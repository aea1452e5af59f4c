"""
Port interfaces (Dependency Inversion).
The stage controller depends only on these abstractions; concrete Gemini,
YouTube and topic-history implementations live in adapters.
All collaborator calls are coroutines – they run on the pipeline's event loop.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

from viraltube.domain.models import AssetBundle, MediaBlob, Script, Topic

ProgressCallback = Callable[[str], None]
PercentCallback = Callable[[int], None]


class ITopicDiscovery(ABC):
    """Topic discovery: live trend search, or concepts for a forced idea."""

    @abstractmethod
    async def discover(self, forced_concept: Optional[str] = None) -> List[Topic]:
        """Return candidate topics (possibly empty)."""
        pass


class IScriptWriter(ABC):
    @abstractmethod
    async def write_script(self, topic: Topic) -> Script:
        """Write the full narration script and SEO metadata for a topic."""
        pass


class IThumbnailGenerator(ABC):
    @abstractmethod
    async def make_thumbnails(
        self,
        topic: str,
        title: str,
        thumbnail_text: Optional[str] = None,
    ) -> List[str]:
        """Generate thumbnail variants; return image resource identifiers."""
        pass


class IVoiceoverSynthesizer(ABC):
    @abstractmethod
    async def synthesize(self, text: str, voice_id: str) -> str:
        """Synthesize narration; return a decodable audio resource identifier."""
        pass


class IStoryboardGenerator(ABC):
    """One storyboard still per scene. Batching and retries are owned by the caller."""

    @abstractmethod
    async def generate_frame(self, topic: str, scene: str) -> Optional[str]:
        """Return an image resource identifier, or None if nothing was produced."""
        pass


class IIntroVideoGenerator(ABC):
    @abstractmethod
    async def make_intro(self, topic: str, hook: str) -> str:
        """Generate a short intro clip (long-running); return its resource identifier."""
        pass


class ICredentialProvider(ABC):
    """Publish credential (e.g. YouTube OAuth token)."""

    @abstractmethod
    async def has_credential(self) -> bool:
        pass

    @abstractmethod
    async def get_credential(self) -> Optional[Any]:
        pass

    @abstractmethod
    async def select_credential(self) -> None:
        """Interactive selection / linking. May leave no credential if the user declines."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Invalidate the stored credential, forcing re-link."""
        pass


class IPublisher(ABC):
    @abstractmethod
    async def upload(
        self,
        video: MediaBlob,
        thumbnail_ref: Optional[str],
        script: Script,
        credential: Any,
        on_progress: Optional[PercentCallback] = None,
    ) -> str:
        """Upload the finished video; return the remote video id."""
        pass


class ITopicHistory(ABC):
    """Set-membership store over a curated topic catalogue."""

    @abstractmethod
    def pick_unused(self) -> Optional[Topic]:
        pass

    @abstractmethod
    def mark_used(self, topic_id: str) -> None:
        pass

    @abstractmethod
    def reset(self) -> None:
        pass


class IVideoRenderer(ABC):
    """Turns an asset snapshot plus script into one finished media blob."""

    @abstractmethod
    async def render(
        self,
        assets: AssetBundle,
        script: Optional[Script],
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaBlob:
        pass
