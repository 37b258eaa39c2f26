import threading
import time

import numpy as np
import pytest

from spectrohelio.contracts import ProcessingError
from spectrohelio.io import (
    ArrayVideoReader,
    FrameConverter,
    FrameGeometry,
    FrameStream,
    VideoReader,
    open_video,
    register_reader,
)

pytestmark = pytest.mark.unit


def make_stack(frames=5, height=4, width=6, dtype=np.uint16):
    return (np.arange(frames * height * width) % 1000).reshape(frames, height, width).astype(dtype)


class TestArrayVideoReader:

    def test_header_from_stack(self):
        reader = ArrayVideoReader(make_stack(), fps=30.0)

        header = reader.header
        assert header.frame_count == 5
        assert (header.geometry.width, header.geometry.height) == (6, 4)
        assert header.geometry.color_mode == "mono"
        assert header.geometry.bit_depth == 16
        assert reader.estimate_fps() == 30.0
        assert isinstance(reader, VideoReader)

    def test_rgb_and_8_bit(self):
        reader = ArrayVideoReader(np.zeros((2, 3, 4, 3), dtype=np.uint8))

        geometry = reader.header.geometry
        assert geometry.color_mode == "rgb"
        assert geometry.bit_depth == 8
        assert geometry.bytes_per_pixel == 3
        assert geometry.frame_bytes == 36

    def test_sequential_reads_are_copies(self):
        stack = make_stack()
        reader = ArrayVideoReader(stack)

        reader.seek_frame(2)
        frame = reader.current_frame()
        frame[:] = 0
        reader.next_frame()

        np.testing.assert_array_equal(reader.current_frame(), stack[3])
        assert stack[2].any()

    def test_out_of_range(self):
        reader = ArrayVideoReader(make_stack())

        with pytest.raises(ProcessingError):
            reader.seek_frame(6)
        reader.seek_frame(5)
        with pytest.raises(ProcessingError):
            reader.current_frame()

    def test_rejects_2d_stack(self):
        with pytest.raises(ValueError):
            ArrayVideoReader(np.zeros((4, 4)))


class TestOpenVideo:

    def test_open_npy(self, temp_dir):
        path = temp_dir / "scan.npy"
        np.save(path, make_stack())

        reader = open_video(path)

        assert reader.header.frame_count == 5

    def test_missing_file(self, temp_dir):
        with pytest.raises(ProcessingError, match="not found"):
            open_video(temp_dir / "missing.npy")

    def test_unknown_suffix(self, temp_dir):
        path = temp_dir / "scan.xyz"
        path.write_bytes(b"data")

        with pytest.raises(ProcessingError, match="No video reader"):
            open_video(path)

    def test_reader_failure_wrapped(self, temp_dir):
        path = temp_dir / "broken.brk"
        path.write_bytes(b"data")

        def broken(_path):
            raise OSError("bad header")

        register_reader(".brk", broken)
        with pytest.raises(ProcessingError, match="bad header"):
            open_video(path)


class TestFrameConverter:

    def test_16_bit_passthrough(self):
        converter = FrameConverter(FrameGeometry(3, 2))

        out = converter.convert(np.full((2, 3), 1234, dtype=np.uint16))

        assert out.dtype == np.float32
        np.testing.assert_array_equal(out, 1234)

    def test_8_bit_rescaled(self):
        converter = FrameConverter(FrameGeometry(3, 2, bit_depth=8))

        out = converter.convert(np.full((2, 3), 255, dtype=np.uint8))

        np.testing.assert_array_equal(out, 255 * 256)

    def test_rgb_averaged_into_buffer(self):
        converter = FrameConverter(FrameGeometry(2, 2, color_mode="rgb"))
        frame = np.stack([np.full((2, 2), v) for v in (100, 200, 300)], axis=-1)
        buffer = converter.create_buffer()

        out = converter.convert(frame, out=buffer)

        assert out is buffer
        np.testing.assert_allclose(out, 200.0)


class TestFrameStream:

    def test_yields_range_in_order(self):
        stack = make_stack(frames=8)
        stream = FrameStream(ArrayVideoReader(stack), threading.Lock(), max_in_flight=8)

        indices = []
        for index, frame in stream.frames(2, 6):
            np.testing.assert_array_equal(frame, stack[index])
            indices.append(index)
            stream.release()

        assert indices == [2, 3, 4, 5]

    def test_back_pressure_blocks_reader(self):
        stream = FrameStream(ArrayVideoReader(make_stack(frames=6)), threading.Lock(), max_in_flight=2)
        read = []

        def consume():
            for index, _ in stream.frames(0, 6):
                read.append(index)

        reader_thread = threading.Thread(target=consume, daemon=True)
        reader_thread.start()
        reader_thread.join(timeout=0.3)

        # Nothing released yet: only two frames may be in flight
        assert read == [0, 1]
        for expected in range(3, 7):
            stream.release()
            deadline = time.monotonic() + 5
            while len(read) < expected and time.monotonic() < deadline:
                time.sleep(0.01)
        reader_thread.join(timeout=5)
        assert read == list(range(6))

    def test_random_access_read(self):
        stack = make_stack()
        stream = FrameStream(ArrayVideoReader(stack), threading.Lock(), max_in_flight=1)

        np.testing.assert_array_equal(stream.read(4), stack[4])
