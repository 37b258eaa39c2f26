"""Multi-threaded pipeline orchestration.

Coordinates the processor and image writer threads with queue-based
inter-thread communication. Manages lifecycle, logging, run summary and
shutdown.
"""

import queue
import time
import logging
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

import pandas as pd

from spectrohelio.contracts import FailurePolicy
from spectrohelio.core.results import results_dataframe
from spectrohelio.core.events import Broadcaster, NotificationEvent, logging_listener
from spectrohelio.pipeline.processor import SolexVideoProcessor
from spectrohelio.setup_directories import get_analysis_path, get_log_path
from spectrohelio.visualization.plotter import PlotterThread

if TYPE_CHECKING:
    from spectrohelio.schemas import InternalConfig

__all__ = ['PipelineOrchestrator']

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Runs the reconstruction pipeline over every configured input video.

    This is the main entry point. It owns two worker threads:

    1. **Processor Thread**: takes video paths from a queue and runs each
       through the full pipeline (average image, dispersion curve,
       reconstruction, ellipse fitting, geometry and corrections).

    2. **Image Writer Thread**: writes generated images to
       ``images/<video>/`` in the configured format, so disk I/O does not
       stall reconstruction.

    Failures of one video are turned into notifications and the run
    continues with the next one (partial success). After every video has
    been processed the per-shift summary is written to
    ``analysis/<results_filename>`` as CSV.

    **Logging:**

    All output goes to both console and a log file in ``logs/``. Log level
    is controlled via ``config.logging.level``.

    Example usage::

        from spectrohelio.pipeline.orchestrator import PipelineOrchestrator

        orch = PipelineOrchestrator(config, output_dirs)
        df = orch.start()
    """

    def __init__(self, config: "InternalConfig", output_dirs: Dict[str, Path],
                 broadcaster: Optional[Broadcaster] = None,
                 failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
                 max_queue_size: int = 100):
        """Initialize orchestrator.

        Parameters
        ----------
        config : InternalConfig
            Fully validated runtime configuration.
        output_dirs : dict
            Output directory paths from ``setup_output_directories()``.
        broadcaster : Broadcaster, optional
            Event sink shared with the processor. A logging listener is
            always attached.
        failure_policy : FailurePolicy
            Passed to the processor.
        max_queue_size : int
            Bound of the image writer queue; a full queue slows the
            processor down.
        """
        self.config = config
        self.output_dirs = output_dirs
        self.broadcaster = broadcaster or Broadcaster()
        self.broadcaster.add_listener(logging_listener)
        self.failure_policy = failure_policy

        self.input_queue: queue.Queue = queue.Queue()
        self.image_queue: queue.Queue = queue.Queue(maxsize=max_queue_size)

        self.processor: Optional[SolexVideoProcessor] = None
        self.writer: Optional[PlotterThread] = None
        self.results_path: Optional[Path] = None

        self._stopped = False
        self._start_time = None

    def _setup_logging(self):
        """Configure the root logger with file and console handlers."""
        log_level = getattr(logging, self.config.logging.level.upper(), logging.INFO)
        log_path = get_log_path(self.output_dirs, "solex")

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Clear existing handlers and add new ones
        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)

        # File handler
        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

        # Console handler
        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        logger.info("Logging: level=%s, file=%s", logging.getLevelName(log_level), log_path)

    def start(self, inputs: Optional[List[str]] = None, setup_logging: bool = True) -> pd.DataFrame:
        """Process every input video and return the run summary.

        This is a blocking call: it starts the processor and writer threads,
        queues the inputs and waits until all of them have been processed.

        Parameters
        ----------
        inputs : list of str, optional
            Video paths. Defaults to ``config.inputs``.
        setup_logging : bool
            Configure root logging handlers (disable when embedding).

        Returns
        -------
        pd.DataFrame
            One row per (video, pixel shift), see ``results_dataframe``.
        """
        if setup_logging:
            self._setup_logging()

        inputs = list(inputs if inputs is not None else self.config.inputs)
        logger.info("=" * 60)
        logger.info("Starting reconstruction pipeline: %d video(s), mode=%s", len(inputs), self.config.mode)
        logger.info("=" * 60)
        self._start_time = time.time()

        self.writer = PlotterThread(
            input_queue=self.image_queue,
            image_format=self.config.output.image_format,
        )
        self.writer.start()

        self.processor = SolexVideoProcessor(
            self.config,
            output_dirs=self.output_dirs,
            broadcaster=self.broadcaster,
            input_queue=self.input_queue,
            image_queue=self.image_queue,
            failure_policy=self.failure_policy,
        )
        self.processor.start()

        for path in inputs:
            if not Path(path).exists():
                message = f"Input video not found: {path}"
                logger.error(message)
                self.broadcaster.broadcast(NotificationEvent.from_exception(
                    "Missing input", FileNotFoundError(message)))
                continue
            self.input_queue.put(path)

        try:
            self._wait_for_queue()
        except KeyboardInterrupt:
            logger.info("Shutdown signal received (Ctrl+C)")
        finally:
            df = self.stop()
        return df

    def _wait_for_queue(self):
        """Block until the processor has consumed every queued video."""
        while self.input_queue.unfinished_tasks:
            if self.processor is not None and not self.processor.is_alive():
                logger.warning("Processor stopped with %d video(s) pending",
                               self.input_queue.unfinished_tasks)
                break
            time.sleep(0.2)

    def stop(self) -> pd.DataFrame:
        """Stop the threads, write the summary and return it. Safe to call twice."""
        if self._stopped:
            return self.get_results()
        self._stopped = True
        logger.info("Stopping pipeline...")

        if self.processor is not None:
            self.processor.stop()
            self.processor.join(timeout=10)
            if self.processor.is_alive():
                logger.warning("Processor did not stop cleanly")
            self.processor.shutdown()

        if self.writer is not None and self.writer.is_alive():
            self.writer.stop()
            self.writer.join(timeout=60)
            if self.writer.is_alive():
                logger.warning("Image writer did not stop cleanly")
            elif self.writer.failed:
                logger.warning("%d image(s) could not be written", self.writer.failed)

        df = self.get_results()
        self.results_path = get_analysis_path(self.output_dirs, self.config.output.results_filename)
        df.to_csv(self.results_path, index=False)
        logger.info("Results: %d rows written to %s", len(df), self.results_path)

        elapsed = time.time() - self._start_time if self._start_time else 0
        logger.info("=" * 60)
        logger.info("Pipeline stopped. Runtime: %.1f seconds", elapsed)
        if not df.empty:
            logger.info("Status counts: %s", df["status"].value_counts().to_dict())
        logger.info("=" * 60)
        return df

    def get_results(self) -> pd.DataFrame:
        if self.processor is None:
            return results_dataframe([])
        return results_dataframe(self.processor.get_results())
