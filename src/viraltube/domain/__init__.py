"""Domain models and value objects."""

from viraltube.domain.errors import (
    ConfigurationError,
    CredentialError,
    GenerationError,
    MissingAssetsError,
    PublishError,
    RenderError,
    ResourceLoadError,
    ViralTubeError,
)
from viraltube.domain.models import (
    STARTABLE_STAGES,
    AssetBundle,
    AssetPatch,
    LogEntry,
    MediaBlob,
    Run,
    Script,
    Severity,
    Stage,
    Topic,
    apply_patch,
)

__all__ = [
    "STARTABLE_STAGES",
    "AssetBundle",
    "AssetPatch",
    "ConfigurationError",
    "CredentialError",
    "GenerationError",
    "LogEntry",
    "MediaBlob",
    "MissingAssetsError",
    "PublishError",
    "RenderError",
    "ResourceLoadError",
    "Run",
    "Script",
    "Severity",
    "Stage",
    "Topic",
    "ViralTubeError",
    "apply_patch",
]
