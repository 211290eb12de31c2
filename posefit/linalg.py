"""Rank-aware linear solve for the Gauss-Newton update.

The dense linear algebra sits behind ``LinearAlgebra``, which has exactly two
operations: a rank-revealing least-squares solve and an SVD pseudo-inverse.
``LinearSolver`` picks one of them as its strategy. Both strategies return the
update and the numerical rank they detected.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.linalg

logger = logging.getLogger(__name__)

LSTSQ = "lstsq"
PINV = "pinv"
METHODS = (LSTSQ, PINV)


class LinearAlgebra:
  """Dense linear-algebra capability backed by SciPy's LAPACK wrappers."""

  def rank_revealing_solve(self, A: np.ndarray, b: np.ndarray, rcond: float) -> Tuple[np.ndarray, int]:
    """Minimum-norm least-squares solution via column-pivoted QR (LAPACK gelsy)."""
    x, _res, rank, _sv = scipy.linalg.lstsq(A, b, cond=rcond, lapack_driver="gelsy")
    return np.asarray(x, float), int(rank)

  def svd_pseudo_inverse(self, A: np.ndarray, rcond: float) -> Tuple[np.ndarray, int]:
    """Moore-Penrose pseudo-inverse; singular values below rcond * s_max are dropped."""
    U, s, Vt = scipy.linalg.svd(A, full_matrices=False)
    cutoff = rcond * (s[0] if s.size else 0.0)
    keep = s > cutoff
    s_inv = np.zeros_like(s)
    s_inv[keep] = 1.0 / s[keep]
    return (Vt.T * s_inv) @ U.T, int(np.count_nonzero(keep))


@dataclass
class LinearSolveResult:
  delta: np.ndarray
  rank: int
  n_parameters: int
  method: str

  @property
  def rank_deficient(self) -> bool:
    return self.rank < self.n_parameters


class LinearSolver:
  """Solves J @ delta ~= r for the parameter update."""

  def __init__(self, method: str = LSTSQ, rcond: float = 1e-9, backend: Optional[LinearAlgebra] = None):
    if method not in METHODS:
      raise ValueError(f"unknown linear solve method '{method}' (expected one of {METHODS})")
    self.method = method
    self.rcond = float(rcond)
    self.backend = backend or LinearAlgebra()

  def solve(self, J: np.ndarray, r: np.ndarray) -> LinearSolveResult:
    m, n = J.shape
    if m == 0 or n == 0:
      return LinearSolveResult(np.zeros(n), 0, n, self.method)

    if self.method == LSTSQ:
      delta, rank = self.backend.rank_revealing_solve(J, r, self.rcond)
    else:
      J_pinv, rank = self.backend.svd_pseudo_inverse(J, self.rcond)
      delta = J_pinv @ r

    result = LinearSolveResult(np.asarray(delta, float).reshape(n), rank, n, self.method)
    if result.rank_deficient:
      logger.debug("rank deficient solve: rank %d of %d (rcond %g)", rank, n, self.rcond)
    return result
