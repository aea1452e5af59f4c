"""Domain models – one production Run and the data it accumulates."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    """Named phase of a Run's state machine."""

    IDLE = "idle"
    RESEARCHING = "researching"
    SCRIPTING = "scripting"
    GENERATING_ASSETS = "generating_assets"
    REVIEW = "review"
    CONNECTING = "connecting"
    RENDERING = "rendering"
    UPLOADING = "uploading"
    COMPLETED = "completed"


# Stages from which a new cycle may be started.
STARTABLE_STAGES = frozenset({Stage.IDLE, Stage.COMPLETED})


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    THINKING = "thinking"


class Topic(BaseModel):
    """A discovered video topic. Immutable once selected."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    headline: str
    category: str = ""
    virality_score: float = Field(default=0.0, alias="viralityScore")
    description: str = ""
    sources: List[str] = Field(default_factory=list)

    @field_validator("sources", mode="before")
    @classmethod
    def _sources_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        return [str(item) for item in value]


class Script(BaseModel):
    """Script plus SEO metadata for one Run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str
    thumbnail_text: str = Field(default="", alias="thumbnailText")
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    hook: str = ""
    full_script_outline: List[str] = Field(default_factory=list, alias="fullScriptOutline")
    full_script_content: str = Field(default="", alias="fullScriptContent")

    @field_validator("tags", mode="before")
    @classmethod
    def _unique_tags(cls, value: Any) -> List[str]:
        seen: Dict[str, None] = {}
        for tag in value or []:
            text = str(tag).strip()
            if text:
                seen.setdefault(text, None)
        return list(seen)


class AssetBundle(BaseModel):
    """Media references produced for a Run."""

    thumbnail_url: Optional[str] = None
    thumbnail_variants: List[str] = Field(default_factory=list)
    audio_url: Optional[str] = None
    storyboard_urls: List[str] = Field(default_factory=list)
    video_url: Optional[str] = None

    def is_renderable(self, script: Optional[Script]) -> bool:
        return bool(self.audio_url) and script is not None


class AssetPatch(BaseModel):
    """Partial update for an AssetBundle. Only explicitly set fields apply."""

    thumbnail_url: Optional[str] = None
    thumbnail_variants: Optional[List[str]] = None
    audio_url: Optional[str] = None
    storyboard_urls: Optional[List[str]] = None
    video_url: Optional[str] = None


def apply_patch(bundle: AssetBundle, patch: AssetPatch) -> AssetBundle:
    """Return a new bundle with the patch's set fields written over `bundle`."""
    changes = patch.model_dump(exclude_unset=True)
    for key in ("thumbnail_variants", "storyboard_urls"):
        if key in changes and changes[key] is None:
            changes[key] = []
    return bundle.model_copy(update=changes, deep=True)


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex[:9])
    timestamp: datetime = Field(default_factory=datetime.now)
    message: str
    severity: Severity = Severity.INFO


class Run(BaseModel):
    """Observable view of the live production cycle."""

    stage: Stage = Stage.IDLE
    topic: Optional[Topic] = None
    script: Optional[Script] = None
    assets: AssetBundle = Field(default_factory=AssetBundle)
    uploaded_id: Optional[str] = None
    autonomous: bool = True
    upload_progress: int = 0


class MediaBlob(BaseModel):
    """Finished recording produced by the compositor."""

    data: bytes
    mime_type: str = "video/mp4"
    duration: float = 0.0

    @property
    def size(self) -> int:
        return len(self.data)
