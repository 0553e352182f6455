import pytest

from tubelift.upload.chunk_planner import ChunkPlanner
from tubelift.upload.models import ChunkRange, UploadSession, UploadState


def session(total, confirmed=0, chunk=4, state=UploadState.MEDIA_IN_PROGRESS):
    return UploadSession(chunk_size=chunk, content_type="video/mp4", total_size=total,
                         bytes_confirmed=confirmed, state=state)


def drain(total, chunk):
    """Ranges the planner hands out when every chunk is acknowledged whole"""
    planner = ChunkPlanner()
    current = session(total, chunk=chunk)
    ranges = []
    while True:
        next_range = planner.next_range(current)
        if next_range is None:
            return ranges
        ranges.append(next_range)
        current.advance_to(next_range.end)
        if current.bytes_confirmed == current.total_size:
            current.state = UploadState.MEDIA_COMPLETE


def test_five_megabytes_in_one_megabyte_chunks():
    assert drain(5_000_000, 1_000_000) == [ChunkRange(i * 1_000_000, 1_000_000) for i in range(5)]


@pytest.mark.parametrize("total,chunk", [(0, 4), (1, 1), (10, 3), (16, 4), (17, 4), (1000, 999), (5, 256)])
def test_ranges_cover_payload_exactly_once(total, chunk):
    ranges = drain(total, chunk)

    assert ranges[0].offset == 0
    for prev, cur in zip(ranges, ranges[1:]):
        assert cur.offset == prev.end
    assert ranges[-1].end == total
    assert sum(r.length for r in ranges) == total
    assert all(r.length <= chunk for r in ranges)


def test_empty_payload_plans_one_finalize_range():
    assert drain(0, 4) == [ChunkRange(0, 0)]


def test_next_range_starts_at_confirmed_offset():
    planner = ChunkPlanner()

    assert planner.next_range(session(10, confirmed=0)) == ChunkRange(0, 4)
    assert planner.next_range(session(10, confirmed=3)) == ChunkRange(3, 4)
    assert planner.next_range(session(10, confirmed=8)) == ChunkRange(8, 2)


def test_next_range_with_unknown_total_asks_full_chunk():
    assert ChunkPlanner().next_range(session(None, confirmed=12)) == ChunkRange(12, 4)


def test_nothing_left_to_send():
    planner = ChunkPlanner()

    assert planner.next_range(session(10, confirmed=10)) is None
    assert planner.next_range(session(10, confirmed=10, state=UploadState.MEDIA_COMPLETE)) is None
    assert planner.next_range(session(0, state=UploadState.MEDIA_COMPLETE)) is None
