import numpy as np
import pytest

from posefit.model import TRANSLATIONAL, SkeletonModel

from conftest import arm_markers


class TestPoseCapability:
  """Locked, clamped and coupled coordinates."""

  def test_locked_coordinate_rejects_set(self, planar_arm):
    planar_arm.set_locked("q1", True)
    assert planar_arm.set_value("q1", 0.4) is False
    assert planar_arm.get_value("q1") == 0.0
    planar_arm.set_locked("q1", False)
    assert planar_arm.set_value("q1", 0.4) is True
    assert planar_arm.get_value("q1") == pytest.approx(0.4)

  def test_clamped_coordinate_clips_to_range(self, planar_arm):
    planar_arm.get_coordinate("q1").range = (-0.2, 0.2)
    planar_arm.set_clamped("q1", True)
    planar_arm.set_value("q1", 1.0)
    assert planar_arm.get_value("q1") == pytest.approx(0.2)
    planar_arm.set_clamped("q1", False)
    planar_arm.set_value("q1", 1.0)
    assert planar_arm.get_value("q1") == pytest.approx(1.0)

  def test_coupled_coordinate_follows_independent(self):
    model = SkeletonModel()
    model.add_body("a")
    model.add_coordinate("x", "a", TRANSLATIONAL, 0)
    model.add_coordinate("y", "a", TRANSLATIONAL, 1, coupled_to="x", coupling_ratio=2.0)
    model.add_marker("m", "a", (0.0, 0.0, 0.0))
    model.set_value("x", 0.25)
    assert model.is_constrained("y")
    assert not model.is_constrained("x")
    assert model.get_value("y") == pytest.approx(0.5)
    np.testing.assert_allclose(model.marker_positions(["m"])[0], [0.25, 0.5, 0.0])

  def test_unknown_names_raise_key_error(self, planar_arm):
    assert planar_arm.coordinate_index("nope") == -1
    with pytest.raises(KeyError):
      planar_arm.get_value("nope")
    with pytest.raises(KeyError):
      planar_arm.marker_offset("nope")
    with pytest.raises(KeyError):
      planar_arm.add_body("child", parent="missing")


class TestForwardKinematics:
  """Finalize semantics and positions."""

  def test_matches_closed_form(self, planar_arm):
    planar_arm.set_pose({"q1": 0.3, "q2": -0.8})
    np.testing.assert_allclose(planar_arm.marker_positions(["elbow", "tip"]), arm_markers(0.3, -0.8), atol=1e-12)

  def test_non_finalizing_set_is_lazy(self, planar_arm):
    planar_arm.marker_positions()
    count = planar_arm.fk_evaluations
    planar_arm.set_value("q1", 0.1, finalize=False)
    planar_arm.set_value("q2", 0.2, finalize=False)
    assert planar_arm.fk_evaluations == count
    planar_arm.marker_positions()
    assert planar_arm.fk_evaluations == count + 1

  def test_finalizing_set_updates_immediately(self, planar_arm):
    count = planar_arm.fk_evaluations
    planar_arm.set_value("q1", 0.1)
    assert planar_arm.fk_evaluations == count + 1

  def test_reset_restores_defaults(self, planar_arm):
    planar_arm.set_pose({"q1": 1.0, "q2": 1.0})
    planar_arm.reset()
    np.testing.assert_allclose(planar_arm.marker_positions(["tip"])[0], [0.8, 0.0, 0.0], atol=1e-12)


class TestHumanSkeleton:
  """Layout of the built-in humanoid."""

  def test_counts(self, human):
    assert len(human.body_names()) == 16
    assert human.n_coordinates == 3 + 11 * 3
    assert len(human.marker_names()) == 15 * 3

  def test_hinges_are_locked(self, human):
    for joint in human.HINGES:
      assert human.get_locked(f"{joint}_yaw")
      assert human.get_locked(f"{joint}_roll")
      assert not human.get_locked(f"{joint}_pitch")

  def test_default_pose_is_upright(self, human):
    origins = dict(zip(human.body_names(), human.body_origins()))
    assert origins["head_top"][2] > origins["pelvis"][2] > origins["right_foot"][2]
    assert origins["left_hand"][1] > 0.0 > origins["right_hand"][1]

  def test_cylinder_markers_sit_off_bone_axis(self, human):
    offset = human.marker_offset("r_thigh_0")
    assert np.hypot(offset[0], offset[1]) == pytest.approx(human.BONE_THICKNESS["upper_leg"])

  def test_marker_template_rejects_unknown_geometry(self):
    from posefit.model import HumanSkeleton
    with pytest.raises(ValueError):
      HumanSkeleton(marker_geom="sphere")
