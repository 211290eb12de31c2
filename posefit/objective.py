from __future__ import annotations
import threading
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import SolveCancelled
from .registry import TargetRegistry


@dataclass
class ErrorReport:
  """Per-frame error diagnostics. Errors are unweighted squared distances."""
  total_weighted_squared_error: float = 0.0
  worst_marker: str = ""
  worst_marker_error: float = 0.0
  worst_coordinate: str = ""
  worst_coordinate_error: float = 0.0
  marker_rms: float = 0.0
  coordinate_rms: float = 0.0

  def summary(self) -> str:
    parts = [f"total weighted squared error = {self.total_weighted_squared_error:.6g}"]
    if self.marker_rms > 0.0:
      s = f"marker error: RMS={self.marker_rms:.6g}"
      if self.worst_marker:
        s += f", max={np.sqrt(self.worst_marker_error):.6g} ({self.worst_marker})"
      parts.append(s)
    if self.coordinate_rms > 0.0:
      s = f"coord error: RMS={self.coordinate_rms:.6g}"
      if self.worst_coordinate:
        s += f", max={np.sqrt(self.worst_coordinate_error):.6g} ({self.worst_coordinate})"
      parts.append(s)
    return ", ".join(parts)


class ObjectiveEvaluator:
  """Applies a parameter vector to the model and measures weighted error."""

  def __init__(self, registry: TargetRegistry, cancel_event: Optional[threading.Event] = None):
    self.registry = registry
    self.model = registry.model
    self.cancel_event = cancel_event or threading.Event()

  def check_cancelled(self) -> None:
    if self.cancel_event.is_set():
      raise SolveCancelled("solve interrupted")

  # ---- Pose -------------------------------------------------------------
  def apply(self, x: np.ndarray) -> None:
    """Set the unprescribed coordinates in order; only the last one finalizes."""
    params = self.registry.unprescribed
    if len(x) != len(params):
      raise ValueError(f"expected {len(params)} parameters, got {len(x)}")
    last = len(params) - 1
    for i, c in enumerate(params):
      self.model.set_value(c.name, float(x[i]), i == last)

  def marker_position(self, m) -> np.ndarray:
    return self.model.transform_position(m.body, self.model.marker_offset(m.name))

  def update_marker_positions(self) -> None:
    for m in self.registry.valid_markers():
      m.computed = self.marker_position(m)

  # ---- Residuals --------------------------------------------------------
  def residuals(self) -> np.ndarray:
    """[sqrt(w) * (exp - comp) per valid marker axis] + [sqrt(w) * (target - q)]."""
    markers = self.registry.valid_markers()
    weighted = self.registry.weighted
    r = np.zeros(3 * len(markers) + len(weighted))
    for k, m in enumerate(markers):
      r[3*k:3*k+3] = np.sqrt(m.weight) * (m.experimental - m.computed)
    row = 3 * len(markers)
    for c in weighted:
      r[row] = np.sqrt(c.weight) * (c.experimental_value - self.model.get_value(c.name))
      row += 1
    return r

  def residual_norm(self, x: np.ndarray) -> float:
    self.check_cancelled()
    self.apply(x)
    self.update_marker_positions()
    return float(np.linalg.norm(self.residuals()))

  def evaluate(self, x: np.ndarray) -> float:
    """Total weighted squared error at x."""
    self.check_cancelled()
    self.apply(x)
    self.update_marker_positions()
    return self._weighted_squared_error()

  def _weighted_squared_error(self) -> float:
    total = 0.0
    for m in self.registry.valid_markers():
      err = m.experimental - m.computed
      total += m.weight * float(err @ err)
    for c in self.registry.weighted:
      err = c.experimental_value - self.model.get_value(c.name)
      total += c.weight * err * err
    return total

  def gradient(self, x: np.ndarray, step: float = 1e-3) -> np.ndarray:
    """Central-difference gradient of ``evaluate``; leaves the model at x."""
    x = np.asarray(x, float)
    g = np.zeros(len(x))
    xp = x.copy()
    for i in range(len(x)):
      xp[i] = x[i] + step
      fp = self.evaluate(xp)
      xp[i] = x[i] - step
      fm = self.evaluate(xp)
      xp[i] = x[i]
      g[i] = (fp - fm) / (2.0 * step)
    self.evaluate(x)
    return g

  # ---- Diagnostics ------------------------------------------------------
  def error_report(self) -> ErrorReport:
    """Worst/RMS errors for the current pose; never feeds back into the solve."""
    rep = ErrorReport(total_weighted_squared_error=self._weighted_squared_error())

    markers = self.registry.valid_markers()
    total = 0.0
    for m in markers:
      err = m.experimental - m.computed
      e2 = float(err @ err)
      total += e2
      if e2 > rep.worst_marker_error:
        rep.worst_marker_error, rep.worst_marker = e2, m.name
    if markers:
      rep.marker_rms = float(np.sqrt(total / len(markers)))

    weighted = self.registry.weighted
    total = 0.0
    for c in weighted:
      err = c.experimental_value - self.model.get_value(c.name)
      e2 = err * err
      total += e2
      if e2 > rep.worst_coordinate_error:
        rep.worst_coordinate_error, rep.worst_coordinate = e2, c.name
    if weighted:
      rep.coordinate_rms = float(np.sqrt(total / len(weighted)))
    return rep
