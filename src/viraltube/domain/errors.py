"""
Custom exceptions.
Messages are kept verbatim from the failing service so retry classification
(which is message based) still sees status codes like 429/503/401.
"""

from typing import Optional


class ViralTubeError(Exception):
    """Base error for the pipeline."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ViralTubeError):
    """Missing key, client secret, or similar setup problem."""
    pass


class GenerationError(ViralTubeError):
    """A generation collaborator (topic, script, media) failed."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.stage = stage


class RenderError(ViralTubeError):
    pass


class MissingAssetsError(RenderError):
    """Render requested without narration audio or script."""
    pass


class ResourceLoadError(RenderError):
    def __init__(self, message: str, step: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.step = step


class PublishError(ViralTubeError):
    pass


class CredentialError(ViralTubeError):
    pass
