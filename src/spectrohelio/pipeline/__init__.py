"""Pipeline modules.

- orchestrator: Main pipeline controller
- processor: Video processor thread
- events (re-exported from spectrohelio.core.events)
"""

from spectrohelio.core.events import (
    Broadcaster,
    EventRecorder,
    GeneratedImageKind,
    ImageGeneratedEvent,
    NotificationEvent,
    PartialReconstructionEvent,
    ProgressEvent,
    Severity,
    logging_listener,
)
from spectrohelio.pipeline.processor import SolexVideoProcessor, batches
from spectrohelio.pipeline.orchestrator import PipelineOrchestrator

__all__ = [
    "Broadcaster",
    "EventRecorder",
    "GeneratedImageKind",
    "ImageGeneratedEvent",
    "NotificationEvent",
    "PartialReconstructionEvent",
    "ProgressEvent",
    "Severity",
    "logging_listener",
    "SolexVideoProcessor",
    "batches",
    "PipelineOrchestrator",
]
