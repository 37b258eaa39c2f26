"""Debug plots and image output."""

from spectrohelio.visualization.plotter import PlotterThread, SolexPlotter, save_image

__all__ = ["PlotterThread", "SolexPlotter", "save_image"]
