import logging

import numpy as np
import pytest
import scipy.optimize

from posefit.errors import ConfigurationError, SolveCancelled
from posefit.io import MarkerTable
from posefit.motions import make_synthetic_trial
from posefit.solver import FrameSolver, SolveContext, SolverConfig, SolveStatus
from posefit.tasks import CoordinateTask, MarkerTask, TaskSet, ValueSource

from conftest import arm_table

ARM_TASKS = ["elbow", "tip"]


class TestSolverConfig:
  """Validation of solver settings."""

  @pytest.mark.parametrize("kwargs", [
    dict(tolerance=0.0), dict(max_iterations=0), dict(perturbation=-1e-3),
    dict(rank_tolerance=-1.0), dict(method="qr"), dict(max_step_halvings=-1),
  ])
  def test_invalid(self, kwargs):
    with pytest.raises(ValueError):
      SolverConfig(**kwargs)

  def test_defaults(self):
    cfg = SolverConfig()
    assert cfg.tolerance == 1e-4
    assert cfg.max_iterations == 1000
    assert cfg.perturbation == 1e-3
    assert cfg.method == "lstsq"
    assert cfg.max_step_halvings == 30


class TestCoordinateTarget:
  """A single weighted coordinate with no markers."""

  def test_converges_to_manual_value(self, single_coordinate_model, empty_table):
    tasks = TaskSet([CoordinateTask("q", 1.0, ValueSource.MANUAL_VALUE, 0.5)])
    result = FrameSolver(single_coordinate_model, tasks, empty_table).solve_frame(0)
    assert result.status is SolveStatus.CONVERGED
    assert result.parameters[0] == pytest.approx(0.5, abs=1e-9)
    assert result.iterations <= 3
    assert single_coordinate_model.get_value("q") == pytest.approx(0.5, abs=1e-9)

  def test_iteration_limit(self, single_coordinate_model, empty_table, caplog):
    tasks = TaskSet([CoordinateTask("q", 1.0, ValueSource.MANUAL_VALUE, 0.5)])
    solver = FrameSolver(single_coordinate_model, tasks, empty_table, SolverConfig(max_iterations=1))
    with caplog.at_level(logging.WARNING, logger="posefit.solver"):
      result = solver.solve_frame(0)
    assert result.status is SolveStatus.ITERATION_LIMIT
    assert not result.converged
    assert result.iterations == 1
    assert "iteration limit" in caplog.text

  def test_nothing_to_fit(self, single_coordinate_model, empty_table):
    result = FrameSolver(single_coordinate_model, TaskSet(), empty_table).solve_frame(0)
    assert result.converged
    assert result.iterations == 0


class TestPlanarArm:
  """Marker fitting on the two-link arm."""

  @pytest.mark.parametrize("method", ["lstsq", "pinv"])
  def test_recovers_pose(self, planar_arm, method):
    cfg = SolverConfig(tolerance=1e-10, method=method)
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), arm_table([[0.7, -0.4]]), cfg)
    result = solver.solve_frame(0)
    assert result.converged
    np.testing.assert_allclose(result.parameters, [0.7, -0.4], atol=1e-6)
    assert result.as_dict() == pytest.approx({"q1": 0.7, "q2": -0.4}, abs=1e-6)
    assert result.report.marker_rms < 1e-6

  def test_accepted_norms_never_increase(self, planar_arm):
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), arm_table([[1.2, 1.0]]))
    result = solver.solve_frame(0, SolveContext(record_history=True))
    h = np.asarray(result.history)
    assert len(h) == result.iterations + 1
    assert np.all(np.diff(h) <= 1e-12)

  def test_resolving_is_idempotent(self, planar_arm):
    cfg = SolverConfig(tolerance=1e-10)
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), arm_table([[0.5, 0.9]]), cfg)
    first = solver.solve_frame(0)
    _time, _guess = solver.prepare_frame(0)
    assert solver.evaluator.residual_norm(first.parameters) == pytest.approx(first.residual_norm, abs=1e-12)
    second = solver.solve(first.parameters)
    np.testing.assert_allclose(second.parameters, first.parameters, atol=1e-8)
    assert second.residual_norm == pytest.approx(first.residual_norm, abs=1e-10)
    assert second.iterations <= 2

  def test_rank_deficient_terminates(self, planar_arm, caplog):
    solver = FrameSolver(planar_arm, TaskSet.for_markers(["elbow"]), arm_table([[0.3, 0.6]]))
    with caplog.at_level(logging.WARNING, logger="posefit.solver"):
      result = solver.solve_frame(0)
    assert result.converged
    assert result.rank == 1
    assert result.rank_deficient
    assert result.parameters[0] == pytest.approx(0.3, abs=1e-4)
    assert result.parameters[1] == pytest.approx(0.0)
    assert sum("rank deficient" in r.getMessage() for r in caplog.records) == 1

  def test_missing_marker_only_in_its_frame(self, planar_arm):
    table = arm_table([[0.2, 0.1], [0.25, 0.15]])
    table.values[0, 3:6] = np.nan
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table)

    solver.prepare_frame(0)
    assert solver.registry.n_residuals() == 3
    result = solver.solve(solver.current_parameters())
    computed = solver.computed_marker_positions()
    assert np.isnan(computed[1]).all()
    assert not np.isnan(computed[0]).any()
    assert result.parameters[0] == pytest.approx(0.2, abs=1e-4)

    solver.prepare_frame(1)
    assert solver.registry.n_residuals() == 6
    result = solver.solve(solver.current_parameters())
    np.testing.assert_allclose(result.parameters, [0.25, 0.15], atol=1e-4)
    assert not np.isnan(solver.computed_marker_positions()).any()

  def test_prescribed_coordinate_from_file(self, planar_arm):
    planar_arm.set_locked("q1", True)
    table = arm_table([[0.4, -0.3]], coordinates={"q1": [0.4]})
    tasks = TaskSet([MarkerTask("tip"), CoordinateTask("q1", 0.0, ValueSource.FROM_FILE)])
    solver = FrameSolver(planar_arm, tasks, table, SolverConfig(tolerance=1e-10))
    result = solver.solve_frame(0)
    assert planar_arm.get_value("q1") == pytest.approx(0.4)
    assert planar_arm.get_locked("q1")
    assert solver.prescribed_names() == ["q1"]
    np.testing.assert_allclose(solver.prescribed_values(), [0.4])
    assert result.names == ["q2"]
    assert result.parameters[0] == pytest.approx(-0.3, abs=1e-6)

  def test_zero_weight_marker_ignored(self, planar_arm):
    tasks = TaskSet([MarkerTask("elbow"), MarkerTask("tip", 0.0)])
    solver = FrameSolver(planar_arm, tasks, arm_table([[0.3, 0.2]]))
    solver.solve_frame(0)
    assert solver.marker_names() == ["elbow"]
    assert solver.experimental_marker_positions().shape == (1, 3)

  def test_misplaced_marker_columns_fail_at_setup(self, planar_arm):
    labels = ["elbow_tx", "elbow_ty", "elbow_tz", "tip_tx", "q1", "q2", "tip_ty", "tip_tz"]
    table = MarkerTable([0.0], labels, np.zeros((1, 8)))
    with pytest.raises(ConfigurationError):
      FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table)

  def test_external_optimizer(self, planar_arm):
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), arm_table([[0.4, 0.3]]))
    _time, guess = solver.prepare_frame(0)
    res = scipy.optimize.minimize(solver.objective, guess, jac=solver.gradient, method="BFGS")
    assert res.fun < 1e-6
    np.testing.assert_allclose(res.x, [0.4, 0.3], atol=1e-2)


class TestCancellation:
  """Cooperative interruption."""

  def test_interrupted_solve_raises(self, planar_arm):
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), arm_table([[0.4, 0.3]]))
    solver.interrupt()
    assert solver.interrupted
    with pytest.raises(SolveCancelled):
      solver.solve_frame(0)
    solver.clear_interrupt()
    assert solver.solve_frame(0).converged

  def test_trial_keeps_completed_frames(self, planar_arm, monkeypatch):
    table = arm_table([[0.1, 0.1], [0.2, 0.2], [0.3, 0.3], [0.4, 0.4]])
    solver = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table)
    solve_frame = solver.solve_frame

    def interrupt_after_second(index, context=None):
      result = solve_frame(index, context)
      if index == 1:
        solver.interrupt()
      return result

    monkeypatch.setattr(solver, "solve_frame", interrupt_after_second)
    trial = solver.solve_trial()
    assert trial.cancelled
    assert [f.frame for f in trial.frames] == [0, 1]


class TestTrial:
  """Whole-trial solving."""

  def test_warm_start(self, planar_arm):
    table = arm_table([[0.6, -0.5], [0.6, -0.5]])
    warm = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table).solve_trial()
    assert warm.frames[1].iterations < warm.frames[0].iterations

    planar_arm.reset()
    cold = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table,
                       SolverConfig(warm_start=False)).solve_trial()
    assert cold.frames[1].iterations == cold.frames[0].iterations

  def test_trial_arrays(self, planar_arm):
    table = arm_table([[0.1, 0.2], [0.2, 0.3], [0.3, 0.4]])
    trial = FrameSolver(planar_arm, TaskSet.for_markers(ARM_TASKS), table).solve_trial(frames=[0, 2])
    assert len(trial) == 2
    np.testing.assert_allclose(trial.times(), [0.0, 0.02])
    assert trial.parameters().shape == (2, 2)
    assert trial.names == ["q1", "q2"]

  def test_human_walk_recovers_ground_truth(self, human):
    synth = make_synthetic_trial(human, "walk", n_frames=4, fps=30.0, seed=1)
    cfg = SolverConfig(tolerance=1e-8)
    solver = FrameSolver(human, TaskSet.for_markers(synth.marker_names), synth.table, cfg)
    trial = solver.solve_trial()
    assert all(f.converged for f in trial.frames)
    assert not any(f.rank_deficient for f in trial.frames)
    idx = [synth.coordinate_names.index(n) for n in trial.names]
    np.testing.assert_allclose(trial.parameters(), synth.truth[:, idx], atol=1e-3)

  def test_human_walk_with_dropout(self, human):
    synth = make_synthetic_trial(human, "walk", n_frames=3, noise_std=0.001, dropout=0.05, seed=2)
    assert np.isnan(synth.table.values).any()
    solver = FrameSolver(human, TaskSet.for_markers(synth.marker_names), synth.table)
    trial = solver.solve_trial()
    assert len(trial) == 3
    for f in trial.frames:
      assert f.report.marker_rms < 0.01
