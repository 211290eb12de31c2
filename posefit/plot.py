from __future__ import annotations
from pathlib import Path
from typing import Optional, Union
import numpy as np
from matplotlib.figure import Figure
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401 (needed for 3D)


class Plotter3D:
  """Drawing utilities for a fitted skeleton and its markers."""

  # ---- low-level -------------------------------------------------------
  @staticmethod
  def set_axes_equal(ax):
    x_limits = ax.get_xlim3d(); y_limits = ax.get_ylim3d(); z_limits = ax.get_zlim3d()
    x_range = abs(x_limits[1] - x_limits[0])
    y_range = abs(y_limits[1] - y_limits[0])
    z_range = abs(z_limits[1] - z_limits[0])
    x_middle = np.mean(x_limits); y_middle = np.mean(y_limits); z_middle = np.mean(z_limits)
    plot_radius = 0.5 * max([x_range, y_range, z_range])
    ax.set_xlim3d([x_middle - plot_radius, x_middle + plot_radius])
    ax.set_ylim3d([y_middle - plot_radius, y_middle + plot_radius])
    ax.set_zlim3d([z_middle - plot_radius, z_middle + plot_radius])

  @staticmethod
  def draw_skeleton_wire(ax, model, color='k', lw: float = 2, alpha: float = 1.0):
    """Line from every body origin to its parent's origin (ground excluded)."""
    names = model.body_names()
    origins = dict(zip(names, model.body_origins()))
    for name in names:
      parent = model.parent_of(name)
      if parent not in origins:
        continue
      xs, ys, zs = zip(origins[parent], origins[name])
      ax.plot(xs, ys, zs, color=color, linewidth=lw, alpha=alpha)

  @staticmethod
  def draw_markers(ax, experimental: np.ndarray, computed: np.ndarray, *, show_links: bool = True):
    """Experimental markers as x, computed as o; NaN rows are skipped."""
    exp = np.asarray(experimental, float).reshape(-1, 3)
    comp = np.asarray(computed, float).reshape(-1, 3)
    ok_e = ~np.isnan(exp).any(axis=1)
    ok_c = ~np.isnan(comp).any(axis=1)
    if ok_e.any():
      ax.scatter(exp[ok_e, 0], exp[ok_e, 1], exp[ok_e, 2], marker='x', s=30, color='C1', label='experimental')
    if ok_c.any():
      ax.scatter(comp[ok_c, 0], comp[ok_c, 1], comp[ok_c, 2], marker='o', s=15, color='C0', label='computed')
    if show_links:
      for k in np.flatnonzero(ok_e & ok_c):
        xs, ys, zs = zip(exp[k], comp[k])
        ax.plot(xs, ys, zs, color='C3', linewidth=0.8, alpha=0.7)

  # ---- high-level ------------------------------------------------------
  @classmethod
  def plot_frame(cls, ax, solver, *, title: str = '', clear: bool = True):
    """Skeleton and markers for the frame the solver last solved."""
    if clear: ax.clear()
    cls.draw_skeleton_wire(ax, solver.model)
    cls.draw_markers(ax, solver.experimental_marker_positions(), solver.computed_marker_positions())
    ax.set_xlabel('X (forward)'); ax.set_ylabel('Y (left)'); ax.set_zlabel('Z (up)')
    ax.set_title(title)
    ax.set_box_aspect([1,1,1])
    cls.set_axes_equal(ax)
    ax.legend(loc='upper right', fontsize='small')

  @classmethod
  def save_frame(cls, solver, path: Union[str, Path], *, title: str = '', dpi: int = 120):
    """Render ``plot_frame`` to an image file without opening a window."""
    fig = Figure(figsize=(6, 6))
    ax = fig.add_subplot(111, projection='3d')
    cls.plot_frame(ax, solver, title=title)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")

  @staticmethod
  def plot_trial_errors(ax, trial, *, label: Optional[str] = None):
    """RMS marker error per frame for a TrialResult."""
    t = trial.times()
    rms = [f.report.marker_rms if f.report is not None else np.nan for f in trial.frames]
    ax.plot(t, rms, label=label)
    ax.set_xlabel('time (s)'); ax.set_ylabel('RMS marker error')
