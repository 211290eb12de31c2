"""Per-frame damped Gauss-Newton solve and the trial loop around it.

One ``FrameSolver`` drives one model instance. Frames of a trial are solved in
order through that instance; callers must not run two solves on the same model
at the same time.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .damping import StepController
from .errors import SolveCancelled
from .jacobian import FiniteDifferenceJacobian
from .linalg import METHODS, LinearSolver
from .objective import ErrorReport, ObjectiveEvaluator
from .registry import TargetRegistry
from .tasks import TaskSet

logger = logging.getLogger(__name__)


@dataclass
class SolverConfig:
  tolerance: float = 1e-4             # on |change of residual norm| per iteration
  max_iterations: int = 1000
  perturbation: float = 1e-3          # forward-difference step, coordinate units
  rank_tolerance: float = 1e-9
  method: str = "lstsq"               # "lstsq" | "pinv"
  max_step_halvings: int = 30
  warm_start: bool = True             # start non-file coordinates from the previous frame
  show_progress: bool = False

  def __post_init__(self):
    if self.tolerance <= 0.0:
      raise ValueError("tolerance must be > 0")
    if self.max_iterations < 1:
      raise ValueError("max_iterations must be >= 1")
    if self.perturbation <= 0.0:
      raise ValueError("perturbation must be > 0")
    if self.rank_tolerance < 0.0:
      raise ValueError("rank_tolerance must be >= 0")
    if self.method not in METHODS:
      raise ValueError(f"method must be one of {METHODS}, got '{self.method}'")
    if self.max_step_halvings < 0:
      raise ValueError("max_step_halvings must be >= 0")


@dataclass
class SolveContext:
  """Per-call options that only affect reporting, never the numbers."""
  verbose: bool = False
  report: bool = True
  record_history: bool = False


class SolveStatus(Enum):
  CONVERGED = "converged"
  ITERATION_LIMIT = "iteration_limit"


@dataclass
class FrameResult:
  frame: int
  time: float
  parameters: np.ndarray
  names: List[str]
  status: SolveStatus
  iterations: int
  residual_norm: float
  rank: int
  rank_deficient: bool = False
  failed_steps: int = 0
  stalled: bool = False
  report: Optional[ErrorReport] = None
  history: List[float] = field(default_factory=list)

  @property
  def converged(self) -> bool:
    return self.status is SolveStatus.CONVERGED

  def as_dict(self) -> dict:
    return dict(zip(self.names, (float(v) for v in self.parameters)))


@dataclass
class TrialResult:
  frames: List[FrameResult]
  names: List[str]
  cancelled: bool = False

  def __len__(self) -> int:
    return len(self.frames)

  def times(self) -> np.ndarray:
    return np.array([f.time for f in self.frames], float)

  def parameters(self) -> np.ndarray:
    if not self.frames:
      return np.zeros((0, len(self.names)))
    return np.vstack([f.parameters for f in self.frames])


class FrameSolver:
  """Fits the unprescribed coordinates of a model to one frame of trial data."""

  def __init__(self, model, tasks: TaskSet, data, config: Optional[SolverConfig] = None):
    self.model = model
    self.data = data
    self.config = config or SolverConfig()
    self.registry = TargetRegistry(model, tasks, data)
    self._interrupted = threading.Event()
    self.evaluator = ObjectiveEvaluator(self.registry, self._interrupted)
    self.jacobian = FiniteDifferenceJacobian(self.evaluator, self.config.perturbation)
    self.linear_solver = LinearSolver(self.config.method, self.config.rank_tolerance)
    self.step_controller = StepController(self.config.max_step_halvings)
    self._frame = -1
    self._time = float("nan")

  # ---- Cancellation -----------------------------------------------------
  def interrupt(self) -> None:
    """Ask the running solve to stop at its next residual evaluation."""
    self._interrupted.set()

  def clear_interrupt(self) -> None:
    self._interrupted.clear()

  @property
  def interrupted(self) -> bool:
    return self._interrupted.is_set()

  # ---- Frame setup ------------------------------------------------------
  @property
  def n_parameters(self) -> int:
    return self.registry.n_parameters

  def prepare_frame(self, index: int) -> Tuple[float, np.ndarray]:
    """Load frame ``index``: set prescribed coordinates, record targets, return the initial guess.

    NaN values in coordinate columns fall back to the coordinate's current value.
    """
    time, row = self.data.get_row(index)

    for c in self.registry.prescribed:
      value = row[c.column] if c.from_file else c.constant_value
      if np.isnan(value):
        continue
      locked = self.model.get_locked(c.name)
      self.model.set_locked(c.name, False)
      self.model.set_value(c.name, value, False)
      self.model.set_locked(c.name, locked)

    guess = np.zeros(self.n_parameters)
    for i, c in enumerate(self.registry.unprescribed):
      value = row[c.column] if c.from_file else np.nan
      guess[i] = self.model.get_value(c.name) if np.isnan(value) else value
      if c.weight:
        c.experimental_value = guess[i] if c.from_file else c.constant_value

    for m in self.registry.markers:
      m.computed = np.full(3, np.nan)
      if m.column < 0:
        m.experimental = np.full(3, np.nan)
        m.valid = False
        continue
      m.experimental = np.asarray(row[m.column:m.column + 3], float)
      m.valid = not np.any(np.isnan(m.experimental))

    self._frame, self._time = index, time
    return time, guess

  # ---- Solve ------------------------------------------------------------
  def solve(self, initial_guess: np.ndarray, context: Optional[SolveContext] = None) -> FrameResult:
    """Iterate damped Gauss-Newton steps on the prepared frame.

    Raises SolveCancelled if ``interrupt()`` was called; no result is produced then.
    """
    cfg = self.config
    ctx = context or SolveContext()
    log = logger.info if ctx.verbose else logger.debug

    x = np.array(initial_guess, float)
    n = len(x)
    norm = self.evaluator.residual_norm(x)
    x = self.current_parameters()
    history = [norm] if ctx.record_history else []

    status = SolveStatus.ITERATION_LIMIT
    rank = n
    failed = 0
    stalled = False
    it = 0

    if n == 0 or self.registry.n_residuals() == 0:
      status = SolveStatus.CONVERGED
    else:
      while it < cfg.max_iterations:
        previous = norm
        r = self.evaluator.residuals()
        J = self.jacobian.build(x)
        lin = self.linear_solver.solve(J, r)
        rank = min(rank, lin.rank)

        out = self.step_controller.step(x, lin.delta, previous, self.evaluator.residual_norm)
        if not out.improved:
          failed += 1
        x = self.current_parameters()
        norm = out.norm
        it += 1
        if ctx.record_history:
          history.append(norm)
        log("frame %d iter %03d: residual norm %.6g (|dq| %.3g, rank %d, halvings %d)",
            self._frame, it, norm, np.linalg.norm(out.delta), lin.rank, out.halvings)

        if abs(norm - previous) < cfg.tolerance:
          status = SolveStatus.CONVERGED
          stalled = not out.improved
          break

    rank_deficient = rank < n
    if rank_deficient:
      logger.warning("frame %d: Jacobian is rank deficient, rank = %d of %d parameters, rcond = %g. "
                     "Results may be inaccurate.", self._frame, rank, n, cfg.rank_tolerance)
    if status is SolveStatus.ITERATION_LIMIT:
      logger.warning("frame %d: iteration limit (%d) reached, residual norm %.6g",
                     self._frame, cfg.max_iterations, norm)

    report = self.evaluator.error_report() if ctx.report else None
    if report is not None:
      log("frame %d (t=%.4f): %s", self._frame, self._time, report.summary())

    return FrameResult(
      frame=self._frame, time=self._time, parameters=x, names=self.unprescribed_names(),
      status=status, iterations=it, residual_norm=norm, rank=rank,
      rank_deficient=rank_deficient, failed_steps=failed, stalled=stalled,
      report=report, history=history,
    )

  def solve_frame(self, index: int, context: Optional[SolveContext] = None) -> FrameResult:
    _time, guess = self.prepare_frame(index)
    return self.solve(guess, context)

  def solve_trial(self, frames: Optional[Iterable[int]] = None, context: Optional[SolveContext] = None) -> TrialResult:
    """Solve frames in order. On cancellation, keep the frames already completed."""
    frames = list(range(self.data.n_frames) if frames is None else frames)
    results: List[FrameResult] = []
    for f in tqdm(frames, desc="Solving frames", disable=not self.config.show_progress):
      if not self.config.warm_start:
        self._reset_guesses()
      try:
        results.append(self.solve_frame(f, context))
      except SolveCancelled:
        logger.warning("solve cancelled at frame %d; %d of %d frames completed", f, len(results), len(frames))
        return TrialResult(results, self.unprescribed_names(), cancelled=True)
    return TrialResult(results, self.unprescribed_names())

  def _reset_guesses(self) -> None:
    for c in self.registry.unprescribed:
      if not c.from_file:
        self.model.set_value(c.name, self.model.get_default_value(c.name), False)

  # ---- Objective for external optimizers --------------------------------
  def objective(self, x: np.ndarray) -> float:
    return self.evaluator.evaluate(np.asarray(x, float))

  def gradient(self, x: np.ndarray) -> np.ndarray:
    return self.evaluator.gradient(np.asarray(x, float), self.config.perturbation)

  # ---- Accessors --------------------------------------------------------
  def current_parameters(self) -> np.ndarray:
    return np.array([self.model.get_value(c.name) for c in self.registry.unprescribed], float)

  def marker_names(self) -> List[str]:
    return [m.name for m in self.registry.solved_markers]

  def computed_marker_positions(self) -> np.ndarray:
    """(n_markers, 3); NaN rows for markers missing in this frame."""
    out = np.full((len(self.registry.solved_markers), 3), np.nan)
    for k, m in enumerate(self.registry.solved_markers):
      if m.valid:
        out[k] = m.computed
    return out

  def experimental_marker_positions(self) -> np.ndarray:
    return np.array([m.experimental for m in self.registry.solved_markers], float).reshape(-1, 3)

  def prescribed_names(self) -> List[str]:
    return [c.name for c in self.registry.prescribed]

  def prescribed_values(self) -> np.ndarray:
    return np.array([self.model.get_value(c.name) for c in self.registry.prescribed], float)

  def unprescribed_names(self) -> List[str]:
    return [c.name for c in self.registry.unprescribed]
