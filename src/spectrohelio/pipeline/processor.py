"""Spectroheliograph video processing pipeline.

Turns a scan video into one rectified solar disk image per requested pixel
shift: average frame, dispersion curve detection, per-line reconstruction,
ellipse fitting, geometry correction and statistical corrections.
"""

import gc
import logging
import math
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np

from spectrohelio.contracts import (
    ContractViolation,
    FailurePolicy,
    ProcessingError,
    assert_reconstructed,
)
from spectrohelio.core.concurrency import Accumulator, CountDownLatch, pool_size
from spectrohelio.core.ellipse import Ellipse
from spectrohelio.core.image import MonoImage
from spectrohelio.core.results import ShiftResult, ShiftStatus
from spectrohelio.io.converter import FrameConverter
from spectrohelio.io.stream import FrameStream
from spectrohelio.io.video import VideoReader, open_video
from spectrohelio.core.events import (
    Broadcaster,
    GeneratedImageKind,
    ImageGeneratedEvent,
    NotificationEvent,
    PartialReconstructionEvent,
    ProgressEvent,
    Severity,
)
from spectrohelio.setup_directories import (
    get_analysis_path,
    get_image_path,
    get_plot_path,
    video_id,
    with_format,
)
from spectrohelio.stacking import DistortionMaps, measure_distortion
from spectrohelio.sun import (
    AverageImageCreator,
    BandingReduction,
    EllipseFittingTask,
    FlatCorrection,
    GeometryCorrector,
    LineReconstructor,
    MagnitudeSunEdgeDetector,
    PixelShiftRange,
    SpectrumFrameAnalyzer,
    WorkflowResults,
    WorkflowState,
    orient_reconstruction,
    remove_background,
)
from spectrohelio.visualization.plotter import SolexPlotter, save_image

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['SolexVideoProcessor', 'batches']

logger = logging.getLogger(__name__)

_BYTES_PER_PIXEL = 4


def batches(shifts: Sequence[float], width: int, lines: int,
            memory_budget_mb: Optional[int], safety_multiplier: float) -> List[List[float]]:
    """Split ``shifts`` into groups whose images fit in the memory budget.

    Each shift costs ``width * lines`` float32 pixels times
    ``safety_multiplier`` (working copies made by the correction stages).
    Without a budget every shift goes in a single batch.
    """
    shifts = list(shifts)
    if not shifts:
        return []
    if memory_budget_mb is None:
        return [shifts]
    per_shift = width * lines * _BYTES_PER_PIXEL * safety_multiplier
    budget = memory_budget_mb * 1024 * 1024
    size = max(1, int(budget // per_shift)) if per_shift > 0 else len(shifts)
    return [shifts[i:i + size] for i in range(0, len(shifts), size)]


class SolexVideoProcessor(threading.Thread):
    """Processes scan videos through the complete reconstruction pipeline.

    This worker thread receives video paths from an input queue. Each video
    goes through the following stages (in order):

    1. **Average image**: frames are read sequentially by a single reader
       (exclusive I/O lock) and averaged on the worker pool, skipping dark
       frames. Per-frame magnitudes locate the disk edges in the scan.

    2. **Dispersion curve**: the average frame is analyzed to find the
       illuminated columns and the polynomial of the spectral line. The
       valid :class:`PixelShiftRange` follows from it; requested shifts
       outside the range are dropped.

    3. **Reconstruction**: for every frame in the reconstruction range,
       worker threads sample each requested shift along the curve. Rows
       are written by a single accumulator thread; a countdown latch sized
       to the frame count guarantees completeness before fitting starts.
       Shifts are grouped in memory-bounded batches, the video being
       reopened per batch.

    4. **Ellipse fitting**: attempted on each state in ascending pixel
       shift order (including an internal detection shift); the first
       success is shared by every state.

    5. **Geometry and corrections**: shear/scale rectification, optional
       rotation and autocrop, then banding, background and flat
       corrections when enabled.

    Partial success is preferred: a pixel shift that fails is reported as
    a :class:`NotificationEvent` and a failed :class:`ShiftResult`, and the
    other shifts are still emitted. Contract violations follow
    ``failure_policy``.

    Example usage::

        processor = SolexVideoProcessor(config, output_dirs=output_dirs,
                                        broadcaster=broadcaster)
        results = processor.process_video(reader, "scan_01")
        processor.shutdown()
    """

    def __init__(self, config: "InternalConfig",
                 output_dirs: Optional[Dict[str, Path]] = None,
                 broadcaster: Optional[Broadcaster] = None,
                 input_queue: Optional[queue.Queue] = None,
                 image_queue: Optional[queue.Queue] = None,
                 failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
                 name: str = "SolexVideoProcessor"):
        """Initialize processor with validated configuration.

        Parameters
        ----------
        config : InternalConfig
            Fully validated runtime configuration.
        output_dirs : dict, optional
            Output directory paths (from setup_output_directories). Without
            them nothing is written to disk.
        broadcaster : Broadcaster, optional
            Receives progress, notification and generated-image events.
        input_queue : queue.Queue, optional
            Video paths to process when running as a thread.
        image_queue : queue.Queue, optional
            ``(image, path)`` items for the image writer thread. When None
            and ``output_dirs`` is set, images are written inline.
        failure_policy : FailurePolicy
            What to do when a stage breaks its contract.
        """
        super().__init__(daemon=True, name=name)

        self.config = config
        self.output_dirs = output_dirs
        self.broadcaster = broadcaster or Broadcaster()
        self.input_queue = input_queue
        self.image_queue = image_queue
        self.failure_policy = FailurePolicy(failure_policy)
        self._stop_event = threading.Event()

        proc = config.processor
        self.max_in_flight = proc.max_in_flight_frames
        self.memory_budget_mb = proc.memory_budget_mb
        self.safety_multiplier = proc.safety_multiplier
        self.debug_images = proc.generate_debug_images
        self.shift_step = config.spectrum.pixel_shift_step
        self.requested_shifts = sorted(set(config.spectrum.requested_shifts) | {config.spectrum.pixel_shift})
        self.detection_offset = config.ellipse.detection_shift_offset
        self.horizontal_mirror = config.geometry.horizontal_mirror
        self.vertical_mirror = config.geometry.vertical_mirror

        # Initialize processing modules
        self.executor = ThreadPoolExecutor(
            max_workers=pool_size(proc.thread_multiplier, proc.max_threads),
            thread_name_prefix="frame-worker",
        )
        self.io_lock = threading.Lock()
        self.analyzer = SpectrumFrameAnalyzer(config)
        self.average_creator = AverageImageCreator(config, self.executor, self.io_lock, self.broadcaster)
        self.edge_detector = MagnitudeSunEdgeDetector(config)
        self.ellipse_task = EllipseFittingTask(config, self.broadcaster)
        self.geometry = GeometryCorrector(config)
        self.banding = BandingReduction(config) if config.banding.enabled else None
        self.flat = FlatCorrection(config) if config.flat.enabled else None
        self.background_enabled = config.background.enabled
        self.background_tolerance = config.background.tolerance
        self.save_images = config.output.save_images
        self.save_distortion_maps = config.output.save_distortion_maps

        self.results: List[ShiftResult] = []
        self.output_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Thread lifecycle
    # ------------------------------------------------------------------

    def stop(self):
        """Signal processor to stop gracefully."""
        self._stop_event.set()

    def stopped(self):
        """Check if processor should stop."""
        return self._stop_event.is_set()

    def shutdown(self):
        """Release the worker pool (call once no more videos will be processed)."""
        self.executor.shutdown(wait=True)

    def run(self):
        """Main processor loop (runs in thread).

        Reads video paths from ``input_queue`` until stopped. Every item is
        marked done, even when its processing fails.
        """
        if self.input_queue is None:
            raise RuntimeError("SolexVideoProcessor started without an input queue")
        logger.info("Processor started, waiting for videos...")

        while not self.stopped():
            try:
                path = self.input_queue.get(timeout=1)
            except queue.Empty:
                continue
            try:
                self.process_file(path)
            except Exception:
                logger.exception("Failed to process video: %s", path)
            finally:
                self.input_queue.task_done()

        logger.info("Processor stopped")

    def get_results(self) -> List[ShiftResult]:
        with self.output_lock:
            return list(self.results)

    # ------------------------------------------------------------------
    # Per-video processing
    # ------------------------------------------------------------------

    def process_file(self, path) -> bool:
        """Process one video file: open, reconstruct, correct, emit.

        Returns True when at least one pixel shift was produced.
        """
        name = video_id(path)
        try:
            logger.info("Processing: %s", Path(str(path)).name)
            results = self.process_video(path, name)
            return any(r.status != ShiftStatus.FAILED for r in results)

        except ContractViolation as e:
            logger.critical("CRITICAL: Pipeline contract violated: %s", e)
            logger.critical("This indicates a bug in pipeline logic. Stopping pipeline.")
            self.stop()
            self._notify_failure(f"Contract violation in {name}", e)
            self._record([ShiftResult(name, s, ShiftStatus.FAILED, error=str(e)) for s in self.requested_shifts])
            return False

        except Exception as e:
            logger.exception("Error processing %s", path)
            self._notify_failure(f"Unable to process {name}", e)
            self._record([ShiftResult(name, s, ShiftStatus.FAILED, error=str(e)) for s in self.requested_shifts])
            return False

    def process_video(self, source, name: Optional[str] = None) -> List[ShiftResult]:
        """Run the full pipeline on ``source`` (a path or an open VideoReader).

        Raises
        ------
        ProcessingError
            On infrastructure failures (I/O, corrupt frames, worker errors).
        ContractViolation
            When a stage breaks its contract and the policy is FAIL_FAST.
        """
        name = name or video_id(source)
        reader, owned = self._open(source)
        try:
            header = reader.header
            width, height = header.geometry.width, header.geometry.height
            logger.info("Video %s: %d frames of %dx%d, %d bits", name, header.frame_count,
                        width, height, header.geometry.bit_depth)

            average = self.average_creator.create(reader)
            self._emit(GeneratedImageKind.AVERAGE, f"{name} average", average.image, None,
                       self._image_path(name, "average"))
            edges = self.edge_detector.find_edges(average.magnitudes)
            start, end = self.edge_detector.reconstruction_range(edges, header.frame_count)

            analysis = self.analyzer.analyze(average.image.data)
            if self.debug_images and self.output_dirs:
                SolexPlotter().plot_spectrum_analysis(
                    average.image, analysis, get_plot_path(self.output_dirs, name, "spectrum"))
            if analysis.polynomial is None:
                message = f"No spectral line detected in {name}"
                logger.error(message)
                self.broadcaster.broadcast(NotificationEvent(Severity.ERROR, "Spectrum analysis", message))
                results = [ShiftResult(name, s, ShiftStatus.FAILED, error=message)
                           for s in self.requested_shifts]
                self._record(results)
                return results

            shift_range = PixelShiftRange.compute(analysis.polynomial, analysis.left_border,
                                                  analysis.right_border, height, self.shift_step)
            logger.info("Dispersion curve %s, pixel shifts in [%.2f, %.2f]",
                        analysis.polynomial, shift_range.min_shift, shift_range.max_shift)
            shifts = [s for s in self.requested_shifts if shift_range.contains(s)]
            rejected = [s for s in self.requested_shifts if not shift_range.contains(s)]
            results = [ShiftResult(name, s, ShiftStatus.FAILED,
                                   error=f"pixel shift outside [{shift_range.min_shift}, {shift_range.max_shift}]")
                       for s in rejected]
            for s in rejected:
                logger.warning("Pixel shift %.2f is outside the valid range, skipped", s)

            detection_shift = self._detection_shift(shifts, shift_range)
            lines = end - start
            ellipse: Optional[Ellipse] = None
            corrected: List[Tuple[float, MonoImage]] = []

            for batch_index, batch in enumerate(batches(shifts, width, lines, self.memory_budget_mb,
                                                        self.safety_multiplier)):
                if batch_index > 0:
                    gc.collect()
                    if owned:
                        reader.close()
                        reader = open_video(source)
                states = [WorkflowState(width, lines, s) for s in batch]
                if ellipse is None and detection_shift is not None and batch_index == 0:
                    states.append(WorkflowState(width, lines, detection_shift, internal=True))
                states.sort(key=lambda st: st.pixel_shift)

                self.reconstruct(reader, states, analysis.polynomial, start, end)
                ellipse = self._orient_and_fit(states, name, ellipse)

                for state in states:
                    if state.internal:
                        state.discard()
                        continue
                    result, image = self._correct_state(state, ellipse, name)
                    results.append(result)
                    if image is not None:
                        corrected.append((state.pixel_shift, image))
                    state.discard()

            if self.save_distortion_maps and len(corrected) > 1:
                self._save_distortion_maps(corrected, name)

            self._record(results)
            return results
        finally:
            if owned:
                reader.close()

    def _open(self, source) -> Tuple[VideoReader, bool]:
        if hasattr(source, "header") and hasattr(source, "current_frame"):
            return source, False
        return open_video(source), True

    def _detection_shift(self, shifts: Sequence[float], shift_range: PixelShiftRange) -> Optional[float]:
        """Extra shift used only for ellipse detection, when not already requested."""
        candidate = self.config.spectrum.pixel_shift + self.detection_offset
        if not shift_range.contains(candidate):
            candidate = min(max(candidate, shift_range.min_shift), shift_range.max_shift)
        if candidate in shifts:
            return None
        return candidate

    # ------------------------------------------------------------------
    # Reconstruction
    # ------------------------------------------------------------------

    def reconstruct(self, reader: VideoReader, states: Sequence[WorkflowState],
                    polynomial, start: int, end: int) -> None:
        """Fill the row buffer of each state from frames ``[start, end)``.

        Raises
        ------
        ProcessingError
            If a frame cannot be read or reconstructed.
        """
        geometry = reader.header.geometry
        converter = FrameConverter(geometry)
        stream = FrameStream(reader, self.io_lock, self.max_in_flight)
        reconstructors = [LineReconstructor(polynomial, st.pixel_shift, geometry.width, geometry.height)
                          for st in states]
        total = end - start
        latch = CountDownLatch(total)
        errors: List[BaseException] = []
        task = f"Reconstructing {len(states)} image(s)"

        def write_row(state: WorkflowState, row: int, line: np.ndarray) -> None:
            state.reconstructed[row] = line
            if not state.internal:
                self.broadcaster.broadcast(PartialReconstructionEvent(state.pixel_shift, row, total))

        def process(index: int, raw: np.ndarray, acc: Accumulator) -> None:
            try:
                frame = converter.convert(raw)
                row = index - start
                for state, reconstructor in zip(states, reconstructors):
                    line = reconstructor.reconstruct(frame)
                    acc.submit(lambda st=state, ln=line: write_row(st, row, ln))
            except Exception as e:
                errors.append(e)
            finally:
                stream.release()
                latch.count_down()

        with Accumulator(name="ReconstructionAccumulator") as acc:
            try:
                for index, raw in stream.frames(start, end):
                    self.executor.submit(process, index, raw, acc)
                    if (index - start) % 64 == 0:
                        self.broadcaster.broadcast(ProgressEvent.of((index - start) / max(total, 1), task))
            except Exception as e:
                raise ProcessingError.wrap(e)
            latch.wait()
            acc.drain()
        self.broadcaster.broadcast(ProgressEvent.of(1.0, task))

        if errors:
            raise ProcessingError.wrap(errors[0])
        if acc.errors:
            raise ProcessingError.wrap(acc.errors[0])
        for state in states:
            self._check(lambda: assert_reconstructed(state.reconstructed, total, geometry.width))

    def _orient_and_fit(self, states: Sequence[WorkflowState], name: str,
                        ellipse: Optional[Ellipse]) -> Optional[Ellipse]:
        """Orient every state's image, then find the disk if not known yet."""
        for state in states:
            image = orient_reconstruction(MonoImage(state.reconstructed), self.horizontal_mirror,
                                          self.vertical_mirror)
            state.image = image
            state.record_result(WorkflowResults.RECONSTRUCTED, image)

        if ellipse is not None:
            return ellipse
        for state in states:
            fitting = self.ellipse_task.run(state.image)
            state.record_result(WorkflowResults.ELLIPSE_FITTING, fitting)
            if fitting is not None:
                logger.info("Ellipse found on pixel shift %.2f: %s", state.pixel_shift, fitting.ellipse)
                if self.debug_images and self.output_dirs:
                    SolexPlotter().plot_ellipse_fit(state.image, fitting,
                                                    get_plot_path(self.output_dirs, name, "ellipse"))
                return fitting.ellipse
        logger.error("No ellipse found in %s, images will not be geometry corrected", name)
        self.broadcaster.broadcast(NotificationEvent(
            Severity.WARNING, "Ellipse fitting", f"Unable to detect the solar disk in {name}"))
        return None

    # ------------------------------------------------------------------
    # Geometry and corrections
    # ------------------------------------------------------------------

    def _correct_state(self, state: WorkflowState, ellipse: Optional[Ellipse],
                       name: str) -> Tuple[ShiftResult, Optional[MonoImage]]:
        shift = state.pixel_shift
        image = state.image
        self._emit(GeneratedImageKind.RECONSTRUCTION, f"{name} reconstruction ({shift:+.2f})",
                   image, shift, self._image_path(name, "reconstruction", shift))
        if ellipse is None:
            path = self._image_path(name, "reconstruction", shift)
            return ShiftResult(name, shift, ShiftStatus.NO_ELLIPSE, image.width, image.height,
                               output_path=str(path) if path else None), None
        try:
            image = image.with_metadata(image.metadata.with_ellipse(ellipse))
            geometry = self.geometry.correct(image, ellipse)
            state.record_result(WorkflowResults.GEOMETRY_CORRECTION, geometry.corrected)
            image = geometry.corrected

            if self.banding is not None:
                image = self.banding.apply(image)
                state.record_result(WorkflowResults.BANDING_CORRECTION, image)
            if self.background_enabled:
                image = remove_background(image, self.background_tolerance, geometry.blackpoint)
                state.record_result(WorkflowResults.BACKGROUND_CORRECTION, image)
            if self.flat is not None:
                image = self.flat.apply(image)
                state.record_result(WorkflowResults.FLAT_CORRECTION, image)
            state.image = image

        except ContractViolation as e:
            if self.failure_policy == FailurePolicy.FAIL_FAST:
                raise
            logger.error("Contract violated for pixel shift %.2f, skipped: %s", shift, e)
            self._notify_failure(f"Pixel shift {shift:+.2f} skipped", e)
            return ShiftResult(name, shift, ShiftStatus.FAILED, error=str(e)), None
        except Exception as e:
            logger.exception("Geometry correction failed for pixel shift %.2f", shift)
            self._notify_failure(f"Pixel shift {shift:+.2f} failed", e)
            return ShiftResult(name, shift, ShiftStatus.FAILED, error=str(e)), None

        path = self._image_path(name, "geometry_corrected", shift)
        self._emit(GeneratedImageKind.GEOMETRY_CORRECTED, f"{name} corrected ({shift:+.2f})",
                   image, shift, path)
        circle = geometry.circle
        cx, cy = circle.center
        semi_major, semi_minor = circle.semi_axes
        result = ShiftResult(
            name, shift, ShiftStatus.OK, image.width, image.height,
            center_x=cx, center_y=cy, semi_major=semi_major, semi_minor=semi_minor,
            angle_deg=math.degrees(ellipse.rotation_angle),
            output_path=str(path) if path else None,
        )
        return result, image

    def _save_distortion_maps(self, corrected: Sequence[Tuple[float, MonoImage]], name: str) -> None:
        """Measure every corrected image against the first one and save the maps."""
        reference = corrected[0][1]
        maps = DistortionMaps()
        for shift, image in corrected[1:]:
            if image.data.shape != reference.data.shape:
                logger.warning("Pixel shift %.2f has a different size, no distortion map", shift)
                continue
            distortion_map = measure_distortion(reference, image, self.config.distortion)
            logger.info("Distortion map for shift %.2f: %s, total magnitude %.2f",
                        shift, distortion_map, distortion_map.total_magnitude())
            maps = maps.append(distortion_map)
            if self.debug_images and self.output_dirs:
                SolexPlotter().plot_distortion_map(
                    distortion_map, get_plot_path(self.output_dirs, name, f"distortion_{shift:+.2f}"))
        if self.output_dirs and len(maps):
            path = get_analysis_path(self.output_dirs, f"{name}_distortion_maps.bin")
            with open(path, "wb") as f:
                maps.save_to(f)
            logger.info("Saved %d distortion maps to %s", len(maps), path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check(self, contract) -> None:
        try:
            contract()
        except ContractViolation:
            if self.failure_policy == FailurePolicy.FAIL_FAST:
                raise
            logger.exception("Contract violation ignored (policy=%s)", self.failure_policy.value)

    def _image_path(self, name: str, kind: str, shift: Optional[float] = None) -> Optional[Path]:
        if not (self.output_dirs and self.save_images):
            return None
        suffix = self.config.output.image_format
        return with_format(get_image_path(self.output_dirs, name, kind, shift), suffix)

    def _emit(self, kind: GeneratedImageKind, title: str, image: MonoImage,
              shift: Optional[float], path: Optional[Path]) -> None:
        if path is not None:
            if self.image_queue is not None:
                self.image_queue.put((image, path))
            else:
                save_image(image, path, self.config.output.image_format)
        self.broadcaster.broadcast(ImageGeneratedEvent(kind, title, image, shift, path))

    def _notify_failure(self, title: str, error: BaseException) -> None:
        self.broadcaster.broadcast(NotificationEvent.from_exception(title, error))

    def _record(self, results: Sequence[ShiftResult]) -> None:
        with self.output_lock:
            self.results.extend(results)
