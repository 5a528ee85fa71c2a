import itertools
import random
import threading

import pytest

from hlsdl.errors import ReassemblyError, SegmentError
from hlsdl.joiner import Joiner

PARTS = [b"seg0-", b"seg1--", b"seg2---", b"seg3----"]


def test_out_of_order_joins_are_written_in_index_order(tmp_path):
    joiner = Joiner(tmp_path / "out.ts")
    for index in (2, 0, 3, 1):
        joiner.join(index, PARTS[index])
    joiner.run(len(PARTS))
    assert (tmp_path / "out.ts").read_bytes() == b"".join(PARTS)
    assert joiner.written == len(b"".join(PARTS))
    assert not joiner.tmp.exists()


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_every_completion_order_gives_playlist_order(tmp_path, order):
    joiner = Joiner(tmp_path / "out.ts")
    for index in order:
        joiner.join(index, PARTS[index])
    joiner.run(4)
    assert (tmp_path / "out.ts").read_bytes() == b"".join(PARTS)


def test_concurrent_producers(tmp_path):
    parts = [f"<{i}>".encode() for i in range(200)]
    order = list(range(200))
    random.Random(7).shuffle(order)
    joiner = Joiner(tmp_path / "out.ts")

    def feed(indices):
        for i in indices:
            joiner.join(i, parts[i])

    threads = [threading.Thread(target=feed, args=(order[n::4],)) for n in range(4)]
    for t in threads:
        t.start()
    joiner.run(len(parts))
    for t in threads:
        t.join()
    assert (tmp_path / "out.ts").read_bytes() == b"".join(parts)


def test_duplicate_join_is_not_written_twice(tmp_path):
    joiner = Joiner(tmp_path / "out.ts")
    joiner.join(0, PARTS[0])
    joiner.join(0, PARTS[0])
    joiner.join(2, PARTS[2])
    joiner.join(2, b"other")
    joiner.join(1, PARTS[1])
    joiner.join(3, PARTS[3])
    joiner.run(4)
    assert (tmp_path / "out.ts").read_bytes() == b"".join(PARTS)


def test_failure_releases_buffered_segments(tmp_path):
    joiner = Joiner(tmp_path / "out.ts")
    for index in (3, 2, 1):
        joiner.join(index, PARTS[index])
    joiner.fail(RuntimeError("stop"))
    with pytest.raises(RuntimeError, match="stop"):
        joiner.run(4)
    assert joiner.cursor == 0
    assert joiner.pending == 0
    assert not joiner.tmp.exists()
    assert not joiner.path.exists()


def test_fail_aborts_and_removes_partial_output(tmp_path):
    joiner = Joiner(tmp_path / "out.ts")
    joiner.join(0, PARTS[0])
    joiner.fail(SegmentError(1, "http://host/seg1.ts", ValueError("boom")))
    with pytest.raises(SegmentError) as info:
        joiner.run(4)
    assert info.value.index == 1
    assert joiner.cursor == 1
    assert not joiner.tmp.exists()
    assert not joiner.path.exists()


def test_index_out_of_range(tmp_path):
    joiner = Joiner(tmp_path / "out.ts")
    joiner.join(5, b"x")
    with pytest.raises(ReassemblyError):
        joiner.run(2)


def test_zero_segments_writes_empty_file(tmp_path):
    joiner = Joiner(tmp_path / "sub" / "out.ts")
    joiner.run(0)
    assert (tmp_path / "sub" / "out.ts").read_bytes() == b""
    assert joiner.name == str(tmp_path / "sub" / "out.ts")


def test_existing_output_untouched_on_failure(tmp_path):
    out = tmp_path / "out.ts"
    out.write_bytes(b"previous run")
    joiner = Joiner(out)
    joiner.fail(RuntimeError("boom"))
    with pytest.raises(RuntimeError):
        joiner.run(1)
    assert out.read_bytes() == b"previous run"
