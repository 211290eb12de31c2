"""Target registry: classifies model markers and coordinates for the solver.

Built once per trial from a model, a task set and the experimental column
labels. Targets hold names only; every pose or position query goes back
through the model.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

import numpy as np

from .errors import ConfigurationError
from .tasks import TaskSet, ValueSource

logger = logging.getLogger(__name__)


@dataclass
class MarkerTarget:
  name: str
  body: str
  column: int
  weight: float
  experimental: np.ndarray = field(default_factory=lambda: np.full(3, np.nan))
  computed: np.ndarray = field(default_factory=lambda: np.full(3, np.nan))
  valid: bool = False

  @property
  def solved(self) -> bool:
    return self.weight > 0.0


@dataclass
class CoordinateTarget:
  name: str
  prescribed: bool
  column: int = -1
  constant_value: float = 0.0
  weight: float = 0.0
  experimental_value: float = np.nan

  @property
  def from_file(self) -> bool:
    return self.column >= 0


class TargetRegistry:
  """Marker and coordinate targets, split into the sets the solver works on.

  ``unprescribed`` is the parameter set: its order fixes the meaning of every
  parameter vector, step vector and Jacobian column. ``weighted`` is the subset
  of it (same objects) that contributes coordinate error rows.
  """

  def __init__(self, model, tasks: TaskSet, data):
    self.model = model
    self.data = data
    self.markers: Tuple[MarkerTarget, ...] = tuple(self._build_markers(tasks))
    coords = self._build_coordinates(tasks)
    self.coordinates: Tuple[CoordinateTarget, ...] = tuple(coords)
    self.prescribed: Tuple[CoordinateTarget, ...] = tuple(c for c in coords if c.prescribed)
    self.unprescribed: Tuple[CoordinateTarget, ...] = tuple(c for c in coords if not c.prescribed)
    self.weighted: Tuple[CoordinateTarget, ...] = tuple(c for c in self.unprescribed if c.weight)
    self.solved_markers: Tuple[MarkerTarget, ...] = tuple(m for m in self.markers if m.solved)

  @property
  def n_parameters(self) -> int:
    return len(self.unprescribed)

  def valid_markers(self) -> List[MarkerTarget]:
    return [m for m in self.solved_markers if m.valid]

  def n_residuals(self) -> int:
    return 3 * len(self.valid_markers()) + len(self.weighted)

  # ---- Building ---------------------------------------------------------
  def _build_markers(self, tasks: TaskSet) -> List[MarkerTarget]:
    out: List[MarkerTarget] = []
    for task in tasks.marker_tasks():
      if not self.model.has_marker(task.name):
        raise ConfigurationError(f"marker '{task.name}' named in marker task not found in model")
      column = self.data.find_column(f"{task.name}_tx")
      if task.weight > 0.0 and column < 0:
        raise ConfigurationError(f"experimental data for marker '{task.name}' not found "
                                 f"(expected column '{task.name}_tx')")
      # y and z must follow x directly; the solver reads three consecutive values
      if column >= 0 and self.data.column_labels[column+1:column+3] != [f"{task.name}_ty", f"{task.name}_tz"]:
        if task.weight > 0.0:
          raise ConfigurationError(f"experimental data for marker '{task.name}' must be in consecutive columns "
                                   f"'{task.name}_tx', '{task.name}_ty', '{task.name}_tz'")
        column = -1
      out.append(MarkerTarget(task.name, self.model.marker_body(task.name), column, task.weight))
    return out

  def _build_coordinates(self, tasks: TaskSet) -> List[CoordinateTarget]:
    names = self.model.coordinate_names()
    coords = [
      CoordinateTarget(
        name=n,
        prescribed=self.model.get_locked(n) or self.model.is_constrained(n),
        constant_value=self.model.get_default_value(n),
      )
      for n in names
    ]

    for task in tasks.coordinate_tasks():
      idx = self.model.coordinate_index(task.name)
      if idx < 0:
        raise ConfigurationError(f"coordinate '{task.name}' named in coordinate task not found in model")
      info = coords[idx]
      if task.value_source is ValueSource.FROM_FILE:
        # coordinates follow markers in a trial table, so search from the end
        j = self.data.rfind_column(task.name)
        if j < 0:
          raise ConfigurationError(f"coordinate task '{task.name}' specifies from_file "
                                   f"but no column found for this coordinate")
        info.column = j
      elif task.value_source is ValueSource.MANUAL_VALUE:
        info.constant_value = float(task.value)
      info.weight = task.weight
    return coords

  # ---- Reporting --------------------------------------------------------
  def describe(self) -> List[str]:
    """Human-readable summary of the tasks, also logged at INFO."""
    lines: List[str] = []
    if self.solved_markers:
      lines.append("Marker Tasks:")
    for m in self.solved_markers:
      lines.append(f"\t{m.name}: weight {m.weight:g} from file (columns {m.column}-{m.column + 2})")
    if self.weighted:
      lines.append("Unprescribed Coordinate Tasks (with nonzero weight):")
    for c in self.weighted:
      src = (f"from file (column {c.column})" if c.from_file
             else f"constant target value of {c.constant_value:g}")
      lines.append(f"\t{c.name}: weight {c.weight:g} {src}")
    if self.prescribed:
      lines.append("Prescribed Coordinate Tasks:")
    for c in self.prescribed:
      src = (f"from file (column {c.column})" if c.from_file
             else f"constant target value of {c.constant_value:g}")
      lines.append(f"\t{c.name}: {src}")
    for line in lines:
      logger.info(line)
    return lines

