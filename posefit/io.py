from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
import numpy as np

PathLike = Union[str, Path]
TIME_COLUMNS = ("time", "time_s")
MARKER_SUFFIXES = ("_tx", "_ty", "_tz")


class MarkerTable:
  """Experimental time series: a time column plus labelled value columns.

  Marker positions live in three consecutive columns ``<name>_tx/_ty/_tz``;
  coordinate values are addressed by coordinate name. Missing samples are NaN.
  The time column is not part of ``column_labels``.
  """

  def __init__(self, times: Sequence[float], labels: Sequence[str], values: np.ndarray):
    self.times = np.asarray(times, float).reshape(-1)
    self.column_labels: List[str] = list(labels)
    self.values = np.asarray(values, float).reshape(len(self.times), len(self.column_labels))

  # ---- Reader capability ------------------------------------------------
  @property
  def n_frames(self) -> int:
    return len(self.times)

  def find_column(self, label: str) -> int:
    try:
      return self.column_labels.index(label)
    except ValueError:
      return -1

  def rfind_column(self, label: str) -> int:
    for j in range(len(self.column_labels) - 1, -1, -1):
      if self.column_labels[j] == label:
        return j
    return -1

  def get_row(self, index: int) -> Tuple[float, np.ndarray]:
    if not 0 <= index < self.n_frames:
      raise IndexError(f"frame {index} out of range [0, {self.n_frames})")
    return float(self.times[index]), self.values[index].copy()

  # ---- Convenience ------------------------------------------------------
  def marker_names(self) -> List[str]:
    """Names that have a complete _tx/_ty/_tz triplet, in column order."""
    names: List[str] = []
    for j, c in enumerate(self.column_labels):
      if c.endswith("_tx"):
        base = c[:-3]
        if self.column_labels[j+1:j+3] == [f"{base}_ty", f"{base}_tz"]:
          names.append(base)
    return names

  def marker_trajectory(self, name: str) -> np.ndarray:
    j = self.find_column(f"{name}_tx")
    if j < 0:
      raise KeyError(f"no columns for marker '{name}'")
    return self.values[:, j:j+3].copy()

  @classmethod
  def from_markers(
    cls,
    times: Sequence[float],
    names: Sequence[str],
    markers: np.ndarray,
    coordinates: Optional[Dict[str, Sequence[float]]] = None,
  ) -> "MarkerTable":
    """Build a table from a (T, K, 3) marker array and optional coordinate columns."""
    markers = np.asarray(markers, float)
    T = len(times)
    K = len(names)
    if markers.shape != (T, K, 3):
      raise ValueError(f"markers must have shape {(T, K, 3)}, got {markers.shape}")
    labels = [f"{n}{s}" for n in names for s in MARKER_SUFFIXES]
    blocks = [markers.reshape(T, 3 * K)]
    for cname, series in (coordinates or {}).items():
      labels.append(cname)
      blocks.append(np.asarray(series, float).reshape(T, 1))
    return cls(times, labels, np.hstack(blocks) if blocks else np.zeros((T, 0)))

  @classmethod
  def from_csv(cls, path: PathLike, *, rate: float = 30.0) -> "MarkerTable":
    """Read a header-named CSV; blank cells become NaN.

    The time column is ``time`` or ``time_s``; without one, frames are spaced
    at ``rate`` Hz.
    """
    rec = np.genfromtxt(path, delimiter=",", names=True, dtype=float, autostrip=True,
                        deletechars="", missing_values="", filling_values=np.nan)
    if rec.shape == ():
      rec = rec.reshape(1)
    cols = list(rec.dtype.names)

    time_col = next((c for c in TIME_COLUMNS if c in cols), None)
    T = rec.shape[0]
    times = np.asarray(rec[time_col], float) if time_col else np.arange(T, dtype=float) / rate
    labels = [c for c in cols if c != time_col]
    if not labels:
      raise ValueError(f"{path}: no data columns found")
    values = np.stack([np.asarray(rec[c], float) for c in labels], axis=1)
    return cls(times, labels, values)

  def to_csv(self, path: PathLike, float_fmt: str = "%.6f") -> None:
    write_table_csv(path, self.times, self.column_labels, self.values, float_fmt=float_fmt)


def write_table_csv(
  path: PathLike,
  times: Sequence[float],
  labels: Sequence[str],
  values: np.ndarray,
  *,
  float_fmt: str = "%.6f",
) -> None:
  data = np.column_stack([np.asarray(times, float), np.asarray(values, float)])
  header = ",".join(["time", *labels])
  np.savetxt(path, data, delimiter=",", header=header, comments="", fmt=float_fmt)


def write_motion_csv(path: PathLike, trial, float_fmt: str = "%.6f") -> None:
  """Write solved coordinate values (one row per frame) from a TrialResult."""
  write_table_csv(path, trial.times(), trial.names, trial.parameters(), float_fmt=float_fmt)
