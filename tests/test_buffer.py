"""
Tests for CaptureBuffer over every backing strategy: exact round trips,
payloads larger than a pipe buffer, and extraction stopping the capture.
"""

import os
import sys
import threading
import time

import pytest

from stdgag.backing import BackingStrategy, PipeReadSide
from stdgag.buffer import CaptureBuffer
from stdgag.errors import AlreadyRedirected
from stdgag.streams import REGISTRY, StreamId
from stdgag.utils.resources import open_handle_count

PIPE_BUFFER = 65536

FILE_STRATEGIES = []
if os.name != "nt":
    FILE_STRATEGIES.append(BackingStrategy.TEMPDIR)
    if sys.platform.startswith("linux") and os.path.isdir("/dev/shm"):
        FILE_STRATEGIES.append(BackingStrategy.MEMORY)


def _payload(size: int) -> bytes:
    return bytes((i * 7 + 3) % 251 for i in range(size))


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def _drain(buf: CaptureBuffer, expected: int, timeout: float = 10.0) -> bytes:
    chunks = []
    received = 0
    deadline = time.monotonic() + timeout
    while received < expected and time.monotonic() < deadline:
        chunk = buf.read(PIPE_BUFFER)
        if not chunk:
            time.sleep(0.001)
            continue
        chunks.append(chunk)
        received += len(chunk)
    return b"".join(chunks)


class TestCaptureBuffer:
    def test_capture_stderr(self):
        with CaptureBuffer.stderr() as buf:
            os.write(1, b"Don't capture\n")
            os.write(2, b"Hello world!\n")
            assert buf.read_text() == "Hello world!\n"

    def test_print_output_is_captured(self, capfd):
        # pytest swaps sys.stdout for its own file; print through descriptor 1 instead
        saved, sys.stdout = sys.stdout, open(1, "w", closefd=False)
        stdout = sys.stdout
        try:
            print("before")
            with CaptureBuffer.stdout() as buf:
                print("during")
                assert buf.read() == b"during\n"
            print("after", flush=True)
        finally:
            sys.stdout = saved
            stdout.close()
        assert capfd.readouterr().out == "before\nafter\n"

    def test_second_capture_of_same_stream_fails(self):
        with CaptureBuffer.stdout():
            before = open_handle_count()
            with pytest.raises(AlreadyRedirected):
                CaptureBuffer.stdout()
            assert open_handle_count() == before

    def test_other_stream_is_independent(self):
        with CaptureBuffer.stdout() as out, CaptureBuffer.stderr() as err:
            os.write(1, b"o")
            os.write(2, b"e")
            assert out.read() == b"o"
            assert err.read() == b"e"

    def test_close_releases_stream(self):
        buf = CaptureBuffer.stdout()
        assert buf.active and buf.stream is StreamId.STDOUT
        buf.close()
        assert not buf.active
        assert not REGISTRY.is_claimed(StreamId.STDOUT)

    def test_close_leaks_nothing(self):
        before = open_handle_count()
        CaptureBuffer.stderr(BackingStrategy.PIPE).close()
        assert open_handle_count() == before


class TestRoundTrip:
    @pytest.mark.parametrize("strategy", FILE_STRATEGIES)
    @pytest.mark.parametrize("size", [0, 1, 4096, 4 * PIPE_BUFFER + 17])
    def test_file_backed(self, strategy, size):
        data = _payload(size)
        with CaptureBuffer.stdout(strategy) as buf:
            assert buf.strategy is strategy
            _write_all(1, data)
            assert buf.read() == data

    @pytest.mark.parametrize("size", [0, 1, 4096, 4 * PIPE_BUFFER + 17])
    def test_pipe_backed(self, size):
        data = _payload(size)
        with CaptureBuffer.stdout(BackingStrategy.PIPE) as buf:
            # the pipe fills up, so the writer needs a reader running alongside it
            writer = threading.Thread(target=_write_all, args=(1, data))
            writer.start()
            received = _drain(buf, len(data))
            writer.join(timeout=10.0)
            assert not writer.is_alive()
            assert received == data
            assert buf.read() == b""


class TestIntoInner:
    @pytest.mark.parametrize("strategy", FILE_STRATEGIES + [BackingStrategy.PIPE])
    def test_stops_capture(self, strategy, capfd):
        buf = CaptureBuffer.stdout(strategy)
        os.write(1, b"captured\n")
        reader = buf.into_inner()
        os.write(1, b"not captured\n")

        assert not REGISTRY.is_claimed(StreamId.STDOUT)
        assert reader.read() == b"captured\n"
        assert reader.read() == b""
        reader.close()
        assert capfd.readouterr().out == "not captured\n"

    def test_pipe_reader_reaches_eof(self):
        buf = CaptureBuffer.stderr(BackingStrategy.PIPE)
        os.write(2, b"bye")
        reader = buf.into_inner()
        assert isinstance(reader, PipeReadSide)
        assert reader.read() == b"bye"
        assert reader.read() == b""
        assert reader.at_eof
        reader.close()

    def test_into_inner_twice_returns_same_reader(self):
        buf = CaptureBuffer.stdout()
        reader = buf.into_inner()
        assert buf.into_inner() is reader
        reader.close()
