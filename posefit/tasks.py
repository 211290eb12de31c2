from __future__ import annotations
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Union

from .errors import ConfigurationError


class ValueSource(Enum):
  """Where a coordinate task takes its target value from."""
  DEFAULT_VALUE = "default_value"
  MANUAL_VALUE = "manual_value"
  FROM_FILE = "from_file"


def _check_weight(name: str, weight: float) -> float:
  w = float(weight)
  if not math.isfinite(w) or w < 0.0:
    raise ConfigurationError(f"task '{name}' has invalid weight {weight!r} (must be finite and >= 0)")
  return w


@dataclass
class MarkerTask:
  name: str
  weight: float = 1.0
  apply: bool = True

  def __post_init__(self):
    self.weight = _check_weight(self.name, self.weight)


@dataclass
class CoordinateTask:
  name: str
  weight: float = 0.0
  value_source: ValueSource = ValueSource.DEFAULT_VALUE
  value: float = 0.0
  apply: bool = True

  def __post_init__(self):
    self.weight = _check_weight(self.name, self.weight)
    self.value_source = ValueSource(self.value_source)


Task = Union[MarkerTask, CoordinateTask]


@dataclass
class TaskSet:
  """Ordered list of marker and coordinate tasks for one trial."""
  tasks: List[Task] = field(default_factory=list)

  def add(self, task: Task) -> "TaskSet":
    self.tasks.append(task)
    return self

  def marker_tasks(self) -> Iterator[MarkerTask]:
    return (t for t in self.tasks if isinstance(t, MarkerTask) and t.apply)

  def coordinate_tasks(self) -> Iterator[CoordinateTask]:
    return (t for t in self.tasks if isinstance(t, CoordinateTask) and t.apply)

  def __len__(self) -> int:
    return len(self.tasks)

  @classmethod
  def for_markers(cls, names, weight: float = 1.0) -> "TaskSet":
    """One marker task per name, all with the same weight."""
    return cls([MarkerTask(n, weight) for n in names])
