import queue

import numpy as np
import pytest

from spectrohelio.contracts import ContractViolation, FailurePolicy
from spectrohelio.core.results import ShiftStatus
from spectrohelio.io.video import ArrayVideoReader
from spectrohelio.core.events import (
    GeneratedImageKind,
    ImageGeneratedEvent,
    NotificationEvent,
    PartialReconstructionEvent,
    Severity,
)
from spectrohelio.pipeline.processor import batches

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


class TestBatches:

    def test_empty(self):
        assert batches([], 100, 100, 10, 3.0) == []

    def test_no_budget_single_batch(self):
        assert batches([-1.0, 0.0, 1.0], 100, 100, None, 3.0) == [[-1.0, 0.0, 1.0]]

    def test_budget_splits(self):
        # 1024 x 1024 float32 = 4 MiB per shift
        assert batches([1, 2, 3, 4, 5], 1024, 1024, 8, 1.0) == [[1, 2], [3, 4], [5]]

    def test_at_least_one_shift_per_batch(self):
        assert batches([1, 2], 4096, 4096, 1, 3.0) == [[1], [2]]


def test_process_video_produces_corrected_disk(internal_config, make_processor, scan, recorder):
    processor = make_processor(internal_config)

    results = processor.process_video(ArrayVideoReader(scan), "scan")

    assert len(results) == 1
    result = results[0]
    assert result.status == ShiftStatus.OK
    assert result.pixel_shift == 0.0
    assert result.semi_major == pytest.approx(40.0, rel=0.1)
    assert result.semi_minor == pytest.approx(result.semi_major, rel=0.05)
    assert processor.get_results() == results

    kinds = {e.kind for e in recorder.of_type(ImageGeneratedEvent)}
    assert {GeneratedImageKind.AVERAGE, GeneratedImageKind.RECONSTRUCTION,
            GeneratedImageKind.GEOMETRY_CORRECTED} <= kinds


def test_partial_reconstruction_events_cover_every_line(internal_config, make_processor, scan, recorder):
    processor = make_processor(internal_config)

    processor.process_video(ArrayVideoReader(scan), "scan")

    lines = recorder.of_type(PartialReconstructionEvent)
    # The internal detection shift is never reported
    assert {e.pixel_shift for e in lines} == {0.0}
    assert sorted(e.line for e in lines) == list(range(scan.shape[0]))
    assert all(e.total_lines == scan.shape[0] for e in lines)


def test_out_of_range_shift_fails_alone(make_config, make_processor, scan):
    processor = make_processor(make_config(requested_shifts=[0.0, 100.0]))

    results = {r.pixel_shift: r for r in processor.process_video(ArrayVideoReader(scan), "scan")}

    assert results[0.0].status == ShiftStatus.OK
    assert results[100.0].status == ShiftStatus.FAILED
    assert "outside" in results[100.0].error


def test_images_written_inline(internal_config, make_processor, scan_path, output_dirs):
    processor = make_processor(internal_config, output_dirs=output_dirs)

    result = processor.process_video(scan_path)[0]

    video_dir = output_dirs["images"] / "scan"
    assert (video_dir / "scan_average.npy").exists()
    assert (video_dir / "scan_reconstruction_shift_0.00.npy").exists()
    corrected = np.load(video_dir / "scan_geometry_corrected_shift_0.00.npy")
    assert corrected.shape == (result.height, result.width)
    assert result.output_path.endswith("scan_geometry_corrected_shift_0.00.npy")


def test_images_queued_when_writer_queue_given(internal_config, make_processor, scan, output_dirs):
    image_queue = queue.Queue()
    processor = make_processor(internal_config, output_dirs=output_dirs, image_queue=image_queue)

    processor.process_video(ArrayVideoReader(scan), "scan")

    items = []
    while not image_queue.empty():
        items.append(image_queue.get_nowait())
    assert len(items) == 3
    assert not list((output_dirs["images"] / "scan").glob("*.npy"))


def test_batches_reopen_video_and_share_ellipse(make_config, make_processor, scan_path):
    config = make_config(requested_shifts=[-2.0, 0.0, 2.0],
                         processor={"memory_budget_mb": 1, "safety_multiplier": 20.0})
    processor = make_processor(config)

    results = processor.process_video(scan_path)

    assert [r.pixel_shift for r in results] == [-2.0, 0.0, 2.0]
    assert all(r.status == ShiftStatus.OK for r in results)
    centers = {(round(r.center_x, 6), round(r.center_y, 6)) for r in results}
    assert len(centers) == 1


def test_uniform_video_has_no_spectral_line(internal_config, make_processor, recorder):
    frames = np.full((32, 16, 24), 1000, dtype=np.uint16)
    processor = make_processor(internal_config)

    results = processor.process_video(ArrayVideoReader(frames), "flat")

    assert [r.status for r in results] == [ShiftStatus.FAILED]
    errors = [e for e in recorder.of_type(NotificationEvent) if e.severity == Severity.ERROR]
    assert errors and "No spectral line" in errors[0].message


def test_process_file_missing_video(internal_config, make_processor, temp_dir, recorder):
    processor = make_processor(internal_config)

    assert processor.process_file(temp_dir / "missing.npy") is False

    assert processor.get_results()[0].status == ShiftStatus.FAILED
    assert recorder.of_type(NotificationEvent)
    assert not processor.stopped()


def test_contract_violation_stops_processor(internal_config, make_processor, scan_path):
    processor = make_processor(internal_config)

    def broken(image, ellipse):
        raise ContractViolation("corrected image has NaN pixels")

    processor.geometry.correct = broken

    assert processor.process_file(scan_path) is False
    assert processor.stopped()


def test_skip_policy_keeps_running(internal_config, make_processor, scan_path):
    processor = make_processor(internal_config, failure_policy=FailurePolicy.SKIP_SHIFT)

    def broken(image, ellipse):
        raise ContractViolation("corrected image has NaN pixels")

    processor.geometry.correct = broken

    results = processor.process_video(scan_path)

    assert [r.status for r in results] == [ShiftStatus.FAILED]
    assert not processor.stopped()


def test_run_requires_input_queue(internal_config, make_processor):
    processor = make_processor(internal_config)

    with pytest.raises(RuntimeError):
        processor.run()


def test_thread_consumes_queue(internal_config, make_processor, scan_path):
    input_queue = queue.Queue()
    processor = make_processor(internal_config, input_queue=input_queue)
    processor.start()

    input_queue.put(scan_path)
    input_queue.join()
    processor.stop()
    processor.join(timeout=5)

    assert not processor.is_alive()
    assert processor.get_results()[0].status == ShiftStatus.OK
