"""Command line entry points: ``posefit demo`` and ``posefit solve``."""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

import numpy as np
import typer

from .errors import ConfigurationError
from .io import MarkerTable, write_motion_csv
from .model import TRANSLATIONAL, HumanSkeleton
from .motions import make_synthetic_trial
from .plot import Plotter3D
from .solver import FrameSolver, SolveContext, SolverConfig
from .tasks import TaskSet

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Fit skeleton poses to motion-capture markers, frame by frame.")


def _setup_logging(verbose: bool) -> None:
  logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format='%(message)s')


def _make_config(method: str, tolerance: float, max_iterations: int, progress: bool) -> SolverConfig:
  try:
    return SolverConfig(tolerance=tolerance, max_iterations=max_iterations, method=method,
                        show_progress=progress)
  except ValueError as e:
    raise typer.BadParameter(str(e)) from e


def _summarize(trial) -> None:
  n = len(trial)
  converged = sum(f.converged for f in trial.frames)
  deficient = sum(f.rank_deficient for f in trial.frames)
  rms = [f.report.marker_rms for f in trial.frames if f.report is not None]
  iters = [f.iterations for f in trial.frames]
  logger.info(f"Solved {n} frames ({converged} converged, {deficient} rank deficient)"
              + (" - cancelled" if trial.cancelled else ""))
  if n:
    logger.info(f"  iterations: mean={np.mean(iters):.1f} max={max(iters)}")
  if rms:
    logger.info(f"  RMS marker error: mean={np.mean(rms):.4f} max={np.max(rms):.4f}")


@app.command()
def demo(
  motion: str = typer.Option("walk", help="Synthetic motion: walk, run or turn."),
  frames: int = typer.Option(30, min=1, help="Number of frames to synthesize."),
  fps: float = typer.Option(30.0, help="Frame rate of the synthetic trial."),
  noise: float = typer.Option(0.002, min=0.0, help="Marker noise std (m)."),
  dropout: float = typer.Option(0.02, min=0.0, max=1.0, help="Probability a marker sample is missing."),
  seed: int = typer.Option(0, help="Random seed for markers and noise."),
  method: str = typer.Option("lstsq", help="Linear solve: lstsq or pinv."),
  tolerance: float = typer.Option(1e-4, help="Convergence tolerance on the residual norm change."),
  max_iterations: int = typer.Option(1000, help="Iteration cap per frame."),
  output: Optional[Path] = typer.Option(None, help="Write solved coordinates to this CSV."),
  plot: Optional[Path] = typer.Option(None, help="Save an image of the last frame."),
  verbose: bool = typer.Option(False, "--verbose", "-v", help="Per-iteration logging."),
):
  """Synthesize a human motion, solve it, and compare against ground truth."""
  _setup_logging(verbose)
  cfg = _make_config(method, tolerance, max_iterations, progress=not verbose)
  try:
    skel = HumanSkeleton(seed=seed)
    trial = make_synthetic_trial(skel, motion, n_frames=frames, fps=fps,
                                 noise_std=noise, dropout=dropout, seed=seed)
  except ValueError as e:
    raise typer.BadParameter(str(e)) from e

  solver = FrameSolver(skel, TaskSet.for_markers(trial.marker_names), trial.table, cfg)
  if verbose:
    solver.registry.describe()
  result = solver.solve_trial(context=SolveContext(verbose=verbose))
  _summarize(result)

  idx = [trial.coordinate_names.index(n) for n in result.names]
  err = result.parameters() - trial.truth[[f.frame for f in result.frames]][:, idx]
  angular = [k for k, n in enumerate(result.names) if skel.get_coordinate(n).kind != TRANSLATIONAL]
  if err.size and angular:
    logger.info(f"  joint angle error vs ground truth: RMS={np.rad2deg(np.sqrt(np.mean(err[:, angular]**2))):.3f} deg")

  if output is not None:
    write_motion_csv(output, result)
    logger.info(f"Saved {output}")
  if plot is not None:
    Plotter3D.save_frame(solver, plot, title=f"{motion} frame {result.frames[-1].frame}" if len(result) else motion)
    logger.info(f"Saved {plot}")


@app.command()
def solve(
  markers: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV with time and <name>_tx/_ty/_tz columns."),
  output: Path = typer.Option(..., "--output", "-o", help="Where to write solved coordinates (CSV)."),
  method: str = typer.Option("lstsq", help="Linear solve: lstsq or pinv."),
  tolerance: float = typer.Option(1e-4, help="Convergence tolerance on the residual norm change."),
  max_iterations: int = typer.Option(1000, help="Iteration cap per frame."),
  rate: float = typer.Option(30.0, help="Frame rate used when the CSV has no time column."),
  verbose: bool = typer.Option(False, "--verbose", "-v", help="Per-iteration logging."),
):
  """Fit the built-in human skeleton to a marker CSV."""
  _setup_logging(verbose)
  cfg = _make_config(method, tolerance, max_iterations, progress=not verbose)
  table = MarkerTable.from_csv(markers, rate=rate)
  skel = HumanSkeleton()
  names = [n for n in table.marker_names() if skel.has_marker(n)]
  if not names:
    logger.error(f"{markers}: no columns match markers of the human skeleton")
    raise typer.Exit(code=2)

  try:
    solver = FrameSolver(skel, TaskSet.for_markers(names), table, cfg)
  except ConfigurationError as e:
    logger.error(f"Configuration error: {e}")
    raise typer.Exit(code=2) from e
  if verbose:
    solver.registry.describe()

  result = solver.solve_trial(context=SolveContext(verbose=verbose))
  _summarize(result)
  write_motion_csv(output, result)
  logger.info(f"Saved {output}")


def main():
  app()


if __name__ == "__main__":
  main()
