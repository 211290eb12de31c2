"""Frame-by-frame weighted least-squares pose fitting to marker data."""
from .errors import ConfigurationError, PosefitError, SolveCancelled
from .io import MarkerTable, write_motion_csv
from .linalg import LinearAlgebra, LinearSolver
from .model import HumanSkeleton, SkeletonModel
from .registry import TargetRegistry
from .solver import FrameResult, FrameSolver, SolveContext, SolverConfig, SolveStatus, TrialResult
from .tasks import CoordinateTask, MarkerTask, TaskSet, ValueSource

__version__ = "0.1.0"

__all__ = [
  "ConfigurationError", "PosefitError", "SolveCancelled",
  "MarkerTable", "write_motion_csv",
  "LinearAlgebra", "LinearSolver",
  "HumanSkeleton", "SkeletonModel",
  "TargetRegistry",
  "FrameResult", "FrameSolver", "SolveContext", "SolverConfig", "SolveStatus", "TrialResult",
  "CoordinateTask", "MarkerTask", "TaskSet", "ValueSource",
]
