import logging

import pytest

from spectrohelio.core.events import (
    Broadcaster,
    EventRecorder,
    NotificationEvent,
    ProgressEvent,
    Severity,
    logging_listener,
)

pytestmark = pytest.mark.unit


def test_progress_is_clamped():
    assert ProgressEvent.of(1.7, "task").progress == 1.0
    assert ProgressEvent.of(-0.2, "task").progress == 0.0
    assert ProgressEvent.of(0.25, "task") == ProgressEvent(0.25, "task")


def test_notification_from_exception_carries_traceback():
    try:
        raise ValueError("bad frame")
    except ValueError as e:
        event = NotificationEvent.from_exception("Reading", e)

    assert event.severity == Severity.ERROR
    assert event.message == "bad frame"
    assert "ValueError" in event.details


def test_broadcast_reaches_every_listener():
    first, second = EventRecorder(), EventRecorder()
    broadcaster = Broadcaster([first])
    broadcaster.add_listener(second)

    broadcaster.broadcast(ProgressEvent.of(0.5, "task"))

    assert len(first.events) == len(second.events) == 1


def test_removed_listener_no_longer_called():
    recorder = EventRecorder()
    broadcaster = Broadcaster([recorder])
    broadcaster.remove_listener(recorder)
    broadcaster.remove_listener(recorder)

    broadcaster.broadcast(ProgressEvent.of(0.5, "task"))

    assert recorder.events == []


def test_failing_listener_does_not_stop_others():
    def broken(event):
        raise RuntimeError("listener bug")

    recorder = EventRecorder()
    broadcaster = Broadcaster([broken, recorder])

    broadcaster.broadcast(ProgressEvent.of(0.1, "task"))

    assert len(recorder.events) == 1


def test_recorder_filters_by_type():
    recorder = EventRecorder()
    recorder(ProgressEvent.of(0.1, "a"))
    recorder(NotificationEvent(Severity.INFO, "title", "message"))

    assert len(recorder.of_type(NotificationEvent)) == 1
    assert len(recorder.of_type(ProgressEvent)) == 1


def test_logging_listener_uses_severity(caplog):
    with caplog.at_level(logging.INFO, logger="spectrohelio.core.events"):
        logging_listener(NotificationEvent(Severity.WARNING, "Ellipse fitting", "no disk"))
        logging_listener(ProgressEvent.of(0.5, "ignored"))

    assert len(caplog.records) == 1
    assert caplog.records[0].levelno == logging.WARNING
    assert "Ellipse fitting: no disk" in caplog.records[0].getMessage()
