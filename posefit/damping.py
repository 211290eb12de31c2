from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
  x: np.ndarray
  delta: np.ndarray
  norm: float
  halvings: int
  improved: bool


class StepController:
  """Backtracking for the Gauss-Newton step: halve delta until the norm does not grow.

  ``norm_fn(x)`` must apply x to the model and return the residual norm there.
  A step that is still worse after ``max_halvings`` halvings is rejected and
  the pose at x is restored, so accepted norms never increase.
  """

  def __init__(self, max_halvings: int = 30):
    if max_halvings < 0:
      raise ValueError("max_halvings must be >= 0")
    self.max_halvings = int(max_halvings)

  def step(
    self,
    x: np.ndarray,
    delta: np.ndarray,
    previous_norm: float,
    norm_fn: Callable[[np.ndarray], float],
  ) -> StepOutcome:
    delta = np.asarray(delta, float).copy()
    trial = norm_fn(x + delta)
    halvings = 0
    while trial > previous_norm and halvings < self.max_halvings:
      delta *= 0.5
      halvings += 1
      trial = norm_fn(x + delta)
      logger.debug("step halved (%d): residual norm %.6g, |dq| %.3g", halvings, trial, np.linalg.norm(delta))

    if trial > previous_norm:
      logger.warning("no improving step after %d halvings (norm %.6g > %.6g); step rejected",
                     halvings, trial, previous_norm)
      norm = norm_fn(x)
      return StepOutcome(np.array(x, float), np.zeros_like(delta), norm, halvings, False)

    return StepOutcome(x + delta, delta, trial, halvings, True)
