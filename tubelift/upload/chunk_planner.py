from __future__ import annotations
from typing import Optional

from tubelift.upload.models import ChunkRange, UploadSession, UploadState


class ChunkPlanner:
    """
    Computes the next byte range to send from the session's confirmed offset.
    Nothing is stored here; every call derives the range from the session.
    """

    def next_range(self, session: UploadSession) -> Optional[ChunkRange]:
        if session.state == UploadState.MEDIA_COMPLETE:
            return None

        offset = session.bytes_confirmed

        # Streaming source: ask for a full chunk, a short read marks the end
        if session.total_size is None:
            return ChunkRange(offset, session.chunk_size)

        # An empty payload still needs one finalize request
        if session.total_size == 0:
            return ChunkRange(0, 0)

        remaining = session.total_size - offset
        if remaining <= 0:
            return None
        return ChunkRange(offset, min(session.chunk_size, remaining))
