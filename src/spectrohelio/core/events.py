"""Progress, notification and generated-image events.

Events are fire-and-forget: a :class:`Broadcaster` hands each event to every
registered listener and a failing listener never interrupts processing.
"""

import logging
import threading
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, List, Optional

__all__ = [
    'ProgressEvent',
    'Severity',
    'NotificationEvent',
    'GeneratedImageKind',
    'ImageGeneratedEvent',
    'PartialReconstructionEvent',
    'Broadcaster',
    'EventRecorder',
    'logging_listener',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """Fraction of ``task`` completed, in [0, 1]."""
    progress: float
    task: str

    @classmethod
    def of(cls, progress: float, task: str) -> "ProgressEvent":
        return cls(min(1.0, max(0.0, float(progress))), task)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class NotificationEvent:
    """User-facing message. ``details`` carries a formatted traceback for errors."""
    severity: Severity
    title: str
    message: str
    details: str = ""

    @classmethod
    def from_exception(cls, title: str, error: BaseException) -> "NotificationEvent":
        details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(Severity.ERROR, title, str(error), details)


class GeneratedImageKind(str, Enum):
    RECONSTRUCTION = "reconstruction"
    GEOMETRY_CORRECTED = "geometry_corrected"
    AVERAGE = "average"
    DEBUG = "debug"


@dataclass(frozen=True)
class ImageGeneratedEvent:
    """An output image is ready; ``path`` is set once it has been written."""
    kind: GeneratedImageKind
    title: str
    image: Any
    pixel_shift: Optional[float] = None
    path: Optional[Path] = None


@dataclass(frozen=True)
class PartialReconstructionEvent:
    """One reconstructed line of the image at ``pixel_shift``."""
    pixel_shift: float
    line: int
    total_lines: int


Listener = Callable[[Any], None]


class Broadcaster:
    """Thread-safe event fan-out to multiple listeners."""

    def __init__(self, listeners: Optional[List[Listener]] = None):
        self._listeners: List[Listener] = list(listeners or [])
        self._lock = threading.Lock()

    def add_listener(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def broadcast(self, event) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed on %s", listener, type(event).__name__)


@dataclass
class EventRecorder:
    """Listener collecting every event it receives."""
    events: List[Any] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __call__(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type) -> List[Any]:
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]


_SEVERITY_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


def logging_listener(event) -> None:
    """Forward notifications to the log; other events are ignored."""
    if isinstance(event, NotificationEvent):
        logger.log(_SEVERITY_LEVELS[Severity(event.severity)], "%s: %s", event.title, event.message)
        if event.details:
            logger.debug("%s", event.details)
