from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UploadState(Enum):
    NOT_STARTED = "not_started"
    INITIATION_STARTED = "initiation_started"
    INITIATION_COMPLETE = "initiation_complete"
    MEDIA_IN_PROGRESS = "media_in_progress"
    MEDIA_COMPLETE = "media_complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.MEDIA_COMPLETE, UploadState.FAILED)


# Forward order of the state machine; FAILED sits outside it
_STATE_ORDER = {
    UploadState.NOT_STARTED: 0,
    UploadState.INITIATION_STARTED: 1,
    UploadState.INITIATION_COMPLETE: 2,
    UploadState.MEDIA_IN_PROGRESS: 3,
    UploadState.MEDIA_COMPLETE: 4,
}


def can_transition(current: UploadState, target: UploadState) -> bool:
    """Legal moves: forward along the machine, or into FAILED from a live state"""
    if current.is_terminal:
        return False
    if target == UploadState.FAILED:
        return True
    return _STATE_ORDER[target] >= _STATE_ORDER[current]


@dataclass(frozen=True)
class ChunkRange:
    """A contiguous byte span of the payload sent as one request"""
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Exclusive end offset"""
        return self.offset + self.length


@dataclass(frozen=True)
class ProgressEvent:
    """Immutable snapshot delivered to progress listeners"""
    state: UploadState
    bytes_confirmed: int
    total_size: Optional[int]

    @property
    def progress(self) -> Optional[float]:
        """Fraction in [0, 1], or None while the total is unknown"""
        if self.total_size is None:
            return None
        if self.total_size == 0:
            return 1.0 if self.state == UploadState.MEDIA_COMPLETE else 0.0
        return self.bytes_confirmed / self.total_size


@dataclass
class UploadSession:
    """
    State of one logical transfer.
    Owned by the ResumableUpload that created it; not shared across threads.
    """
    chunk_size: int
    content_type: str
    total_size: Optional[int] = None
    session_uri: Optional[str] = None
    bytes_confirmed: int = 0
    state: UploadState = UploadState.NOT_STARTED

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.total_size is not None and self.total_size < 0:
            raise ValueError(f"total_size must be >= 0, got {self.total_size}")

    def snapshot(self) -> ProgressEvent:
        return ProgressEvent(self.state, self.bytes_confirmed, self.total_size)

    def advance_to(self, bytes_confirmed: int) -> None:
        """Move the confirmed offset forward; it never goes back or past the total"""
        if bytes_confirmed < self.bytes_confirmed:
            raise ValueError(
                f"Confirmed bytes cannot decrease ({self.bytes_confirmed} -> {bytes_confirmed})"
            )
        if self.total_size is not None and bytes_confirmed > self.total_size:
            raise ValueError(
                f"Confirmed bytes {bytes_confirmed} exceed total size {self.total_size}"
            )
        self.bytes_confirmed = bytes_confirmed
