from __future__ import annotations
from typing import Optional, Sequence, Union

import numpy as np

from .objective import ObjectiveEvaluator


class FiniteDifferenceJacobian:
  """Forward-difference sensitivity of the residual vector to each parameter.

  Rows follow ``ObjectiveEvaluator.residuals``: three per valid solved marker,
  then one per weighted coordinate. The baseline pose must already be applied
  and the computed marker positions current.
  """

  DEFAULT_STEP = 1e-3

  def __init__(self, evaluator: ObjectiveEvaluator, step: Union[float, Sequence[float], None] = None):
    self.evaluator = evaluator
    self.registry = evaluator.registry
    self.model = evaluator.model
    n = self.registry.n_parameters
    step = self.DEFAULT_STEP if step is None else step
    self.dx = np.broadcast_to(np.asarray(step, float), (n,)).copy()
    if np.any(self.dx <= 0.0):
      raise ValueError("perturbation steps must be positive")

  def build(self, x: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    markers = self.registry.valid_markers()
    params = self.registry.unprescribed
    n = len(params)
    n_rows = 3 * len(markers) + len(self.registry.weighted)
    J = out if out is not None else np.zeros((n_rows, n))
    J[:] = 0.0

    w_sqrt = np.array([np.sqrt(m.weight) for m in markers])
    row = 3 * len(markers)

    for i, c in enumerate(params):
      clamped = self.model.get_clamped(c.name)
      self.model.set_clamped(c.name, False)

      # perturb forward
      self.model.set_value(c.name, x[i] + self.dx[i], True)
      for k, m in enumerate(markers):
        p = self.evaluator.marker_position(m)
        J[3*k:3*k+3, i] = w_sqrt[k] * (p - m.computed) / self.dx[i]

      # restore
      self.model.set_value(c.name, x[i], i == n - 1)
      self.model.set_clamped(c.name, clamped)

      # a coordinate error row depends only on its own parameter
      if c.weight:
        J[row, i] = np.sqrt(c.weight)
        row += 1

    return J
