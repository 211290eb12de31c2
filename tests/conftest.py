"""Shared fixtures: small analytic models and the human skeleton."""
import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from posefit.io import MarkerTable
from posefit.model import ROTATIONAL, TRANSLATIONAL, HumanSkeleton, SkeletonModel

L1, L2 = 0.5, 0.3


def make_planar_arm() -> SkeletonModel:
  """Two revolute joints about z; markers at the elbow and the tip."""
  model = SkeletonModel("planar_arm")
  model.add_body("upper")
  model.add_coordinate("q1", "upper", ROTATIONAL, 2)
  model.add_body("lower", "upper", (L1, 0.0, 0.0))
  model.add_coordinate("q2", "lower", ROTATIONAL, 2)
  model.add_marker("elbow", "upper", (L1, 0.0, 0.0))
  model.add_marker("tip", "lower", (L2, 0.0, 0.0))
  return model


def arm_markers(q1: float, q2: float) -> np.ndarray:
  """Closed-form (elbow, tip) positions of the planar arm."""
  elbow = L1 * np.array([np.cos(q1), np.sin(q1), 0.0])
  tip = elbow + L2 * np.array([np.cos(q1 + q2), np.sin(q1 + q2), 0.0])
  return np.vstack([elbow, tip])


def arm_jacobian(q1: float, q2: float) -> np.ndarray:
  """d(elbow, tip)/d(q1, q2), rows stacked x/y/z per marker."""
  s1, c1 = np.sin(q1), np.cos(q1)
  s12, c12 = np.sin(q1 + q2), np.cos(q1 + q2)
  return np.array([
    [-L1*s1, 0.0],
    [L1*c1, 0.0],
    [0.0, 0.0],
    [-L1*s1 - L2*s12, -L2*s12],
    [L1*c1 + L2*c12, L2*c12],
    [0.0, 0.0],
  ])


def arm_table(poses, coordinates=None, fps: float = 100.0) -> MarkerTable:
  """MarkerTable holding the exact arm markers for each (q1, q2) pose."""
  poses = np.atleast_2d(np.asarray(poses, float))
  markers = np.stack([arm_markers(*q) for q in poses])
  times = np.arange(len(poses)) / fps
  return MarkerTable.from_markers(times, ["elbow", "tip"], markers, coordinates)


@pytest.fixture
def planar_arm():
  return make_planar_arm()


@pytest.fixture
def single_coordinate_model():
  """One translational coordinate and no markers."""
  model = SkeletonModel("slider")
  model.add_body("slider")
  model.add_coordinate("q", "slider", TRANSLATIONAL, 0)
  return model


@pytest.fixture
def empty_table():
  return MarkerTable([0.0], [], np.zeros((1, 0)))


@pytest.fixture
def human():
  return HumanSkeleton(seed=0)
