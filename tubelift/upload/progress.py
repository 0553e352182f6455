from __future__ import annotations
"""
Progress listeners. Any callable taking a ProgressEvent qualifies; the
session invokes it synchronously in its own thread.
"""

from typing import Callable, Dict, List

from tubelift.upload.models import ProgressEvent, UploadState
from tubelift.utils.log import log_event

ProgressListener = Callable[[ProgressEvent], None]

_STATE_MESSAGES: Dict[UploadState, tuple] = {
    UploadState.NOT_STARTED: ("Upload Not Started!", "INFO"),
    UploadState.INITIATION_STARTED: ("Initiation Started", "PROGRESS"),
    UploadState.INITIATION_COMPLETE: ("Initiation Completed", "SUCCESS"),
    UploadState.MEDIA_IN_PROGRESS: ("Upload in progress", "PROGRESS"),
    UploadState.MEDIA_COMPLETE: ("Upload Completed!", "SUCCESS"),
    UploadState.FAILED: ("Upload Failed", "ERROR"),
}

_unmapped = set(UploadState) - set(_STATE_MESSAGES)
if _unmapped:
    raise RuntimeError(f"No progress message for states: {sorted(s.name for s in _unmapped)}")


def describe(event: ProgressEvent) -> str:
    message, _ = _STATE_MESSAGES[event.state]
    if event.state != UploadState.MEDIA_IN_PROGRESS:
        return message
    if event.progress is None:
        return f"{message} ({event.bytes_confirmed} bytes sent)"
    return f"{message} ({event.progress:.1%}, {event.bytes_confirmed}/{event.total_size} bytes)"


def console_progress(event: ProgressEvent) -> None:
    """Default listener: one log line per event"""
    _, level = _STATE_MESSAGES[event.state]
    log_event("UPLOAD", describe(event), level)


class ProgressRecorder:
    """Listener that keeps every event, in delivery order"""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def states(self) -> List[UploadState]:
        return [e.state for e in self.events]
