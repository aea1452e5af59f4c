"""Application layer – stage controller, retry discipline and shadow state."""

from viraltube.application.events import EventLog
from viraltube.application.pipeline import PipelineTimings, StageController
from viraltube.application.retry import RetryPolicy
from viraltube.application.scheduler import TaskScheduler
from viraltube.application.state import AssetStore, StateCell

__all__ = [
    "AssetStore",
    "EventLog",
    "PipelineTimings",
    "RetryPolicy",
    "StageController",
    "StateCell",
    "TaskScheduler",
]
