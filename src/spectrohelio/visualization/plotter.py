"""Image writing and debug plots.

Writes reconstructed and corrected images to disk, and renders debug
figures (dispersion curve over the average frame, edge samples over the
reconstructed disk, distortion map heat maps). Supports threaded
queue-based writing for pipeline integration.
"""

import threading
import queue
import logging
from pathlib import Path
from typing import Union

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from spectrohelio.core.image import MAX_PIXEL_VALUE, MonoImage, RGBImage, materialize
from spectrohelio.setup_directories import with_format

__all__ = ['save_image', 'SolexPlotter', 'PlotterThread']

logger = logging.getLogger(__name__)


def save_image(image, output_path: Union[str, Path], image_format: str = "npy") -> Path:
    """Write ``image`` pixels to ``output_path`` (suffix forced to ``image_format``).

    ``npy`` keeps the float32 data as-is. ``png`` writes an 8-bit grayscale
    (or RGB) rendering scaled from [0, 65535].
    """
    image = materialize(image)
    output_path = with_format(output_path, image_format)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(image, RGBImage):
        data = np.stack([image.r, image.g, image.b], axis=-1)
    else:
        data = image.data
    if image_format == "npy":
        np.save(output_path, data)
    elif image_format == "png":
        scaled = np.clip(data / MAX_PIXEL_VALUE, 0.0, 1.0)
        if scaled.ndim == 2:
            plt.imsave(output_path, scaled, cmap='gray', vmin=0.0, vmax=1.0, format='png')
        else:
            plt.imsave(output_path, scaled, format='png')
    else:
        raise ValueError(f"Unsupported image format: {image_format}")
    logger.debug("Image saved: %s", output_path)
    return output_path


class SolexPlotter:
    """Renders debug figures for one processing run.

    Example usage::

        plotter = SolexPlotter()
        plotter.plot_spectrum_analysis(average.image, analysis, "plots/average.png")
    """

    def __init__(self, dpi: int = 100, output_format: str = "png"):
        self.dpi = dpi
        self.output_format = output_format

    def _save_figure(self, fig: plt.Figure, output_path: Path) -> str:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_file = with_format(output_path, self.output_format)
        fig.savefig(output_file, dpi=self.dpi, bbox_inches='tight', format=self.output_format)
        plt.close(fig)
        logger.info("Plot saved: %s", output_file)
        return str(output_file)

    def plot_spectrum_analysis(self, image: MonoImage, analysis, output_path) -> str:
        """Average frame with the detected borders and dispersion curve."""
        fig, ax = plt.subplots(figsize=(8, 6))
        ax.imshow(image.data, cmap='gray', origin='upper')
        if analysis.left_border is not None:
            ax.axvline(analysis.left_border, color='tab:blue', linewidth=0.8)
        if analysis.right_border is not None:
            ax.axvline(analysis.right_border, color='tab:blue', linewidth=0.8)
        if analysis.sample_points:
            points = np.asarray(analysis.sample_points)
            ax.plot(points[:, 0], points[:, 1], '.', color='tab:orange', markersize=3)
        if analysis.polynomial is not None and analysis.left_border is not None:
            xs = np.arange(analysis.left_border, analysis.right_border + 1, dtype=float)
            ax.plot(xs, analysis.polynomial(xs), color='tab:red', linewidth=1)
        ax.set_title("Dispersion curve")
        ax.set_xlabel("x (px)")
        ax.set_ylabel("y (px)")
        return self._save_figure(fig, Path(output_path))

    def plot_ellipse_fit(self, image: MonoImage, fitting, output_path) -> str:
        """Reconstructed disk with the edge samples and fitted ellipse."""
        fig, ax = plt.subplots(figsize=(7, 7))
        ax.imshow(image.data, cmap='gray', origin='upper')
        if fitting.samples:
            samples = np.asarray(fitting.samples)
            ax.plot(samples[:, 0], samples[:, 1], '.', color='tab:red', markersize=2)
        xs, ys = fitting.ellipse.sample_boundary(360)
        ax.plot(np.append(xs, xs[0]), np.append(ys, ys[0]), color='tab:green', linewidth=1)
        ax.set_title(str(fitting.ellipse))
        return self._save_figure(fig, Path(output_path))

    def plot_distortion_map(self, distortion_map, output_path) -> str:
        """dx and dy heat maps of a distortion grid, rejected cells marked."""
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(12, 5))
        limit = max(float(np.abs(distortion_map.dxy).max()), 1e-6)
        for ax, channel, label in ((ax1, 0, 'dx'), (ax2, 1, 'dy')):
            im = ax.imshow(distortion_map.dxy[..., channel], cmap='RdBu_r',
                           vmin=-limit, vmax=limit, origin='upper')
            rows, cols = np.nonzero(distortion_map.rejected)
            if rows.size:
                ax.plot(cols, rows, 'x', color='black', markersize=4)
            ax.set_title(f"{label} (px), step={distortion_map.step}")
            plt.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
        plt.tight_layout()
        return self._save_figure(fig, Path(output_path))


class PlotterThread(threading.Thread):
    """Background writer for generated images.

    Consumes ``(image, output_path)`` tuples from ``input_queue`` and writes
    each image with :func:`save_image`. ``None`` is the shutdown signal.

    Example usage (typically called by orchestrator)::

        writer = PlotterThread(input_queue=image_queue, image_format="png")
        writer.start()
        ...
        writer.stop()
        writer.join(timeout=5)
    """

    def __init__(self, input_queue: queue.Queue, image_format: str = "npy",
                 name: str = 'ImageWriter'):
        super().__init__(name=name, daemon=True)
        self.input_queue = input_queue
        self.image_format = image_format
        self.running = True
        self.written = []
        self.failed = 0

    def run(self):
        logger.info("%s started", self.name)
        while self.running:
            try:
                item = self.input_queue.get(timeout=1.0)
            except queue.Empty:
                continue
            try:
                if item is None:
                    logger.info("%s received shutdown signal", self.name)
                    break
                self._process_item(item)
            finally:
                self.input_queue.task_done()
        logger.info("%s stopped", self.name)

    def _process_item(self, item):
        image, output_path = item
        try:
            self.written.append(save_image(image, output_path, self.image_format))
        except Exception:
            self.failed += 1
            logger.exception("Error writing image %s", output_path)

    def stop(self):
        """Signal thread to stop after the queued images are written."""
        self.input_queue.put(None)
