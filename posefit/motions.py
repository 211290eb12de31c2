from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import numpy as np

from .io import MarkerTable
from .model import HumanSkeleton

Pose = Dict[str, float]


def _deg(a: float) -> float:
  return np.deg2rad(a)


# ---- angles ---------------------------------------------------------------

def angles_walk(
  t: float, f: float = 1.2,
  A_hip_deg: float = 30, A_knee_deg: float = 45,
  A_sh_yaw_deg: float = 25, A_sh_roll_deg: float = 15,
  A_elbow_deg: float = 25
) -> Pose:
  w = 2.0*np.pi*f
  th: Pose = {}

  # torso/neck micro
  th['spine_top_yaw']   = _deg(5.0) * np.sin(0.5*w*t)
  th['spine_top_pitch'] = _deg(3.0) * np.sin(w*t + np.pi/2)
  th['spine_top_roll']  = _deg(2.0) * np.sin(w*t)
  th['neck_top_pitch']  = _deg(2.0) * np.sin(w*t + np.pi/2)
  th['neck_top_roll']   = _deg(2.0) * np.sin(w*t)

  # legs
  A_hip, A_knee = _deg(A_hip_deg), _deg(A_knee_deg)
  th['right_hip_pitch']  = A_hip*np.sin(w*t)
  th['left_hip_pitch']   = -A_hip*np.sin(w*t)
  th['right_knee_pitch'] = 0.5*A_knee*(1.0 - np.cos(w*t))
  th['left_knee_pitch']  = 0.5*A_knee*(1.0 - np.cos(w*t + np.pi))

  # arms
  A_y, A_r, A_e = _deg(A_sh_yaw_deg), _deg(A_sh_roll_deg), _deg(A_elbow_deg)
  th['right_shoulder_yaw']  = A_y*np.sin(w*t + np.pi)
  th['left_shoulder_yaw']   = A_y*np.sin(w*t)
  th['right_shoulder_roll'] = -A_r*np.sin(w*t + np.pi)
  th['left_shoulder_roll']  = A_r*np.sin(w*t)
  th['right_elbow_pitch']   = 0.5*A_e*(1.0 - np.cos(w*t + np.pi))
  th['left_elbow_pitch']    = 0.5*A_e*(1.0 - np.cos(w*t))

  return th


def angles_run(
  t: float, f: float = 2.4,
  A_hip_deg: float = 45, A_knee_deg: float = 75,
  A_sh_yaw_deg: float = 40, A_elbow_deg: float = 40,
  pelvis_pitch_deg: float = 5
) -> Pose:
  w = 2*np.pi*f
  th: Pose = {}

  th['pelvis_pitch'] = _deg(pelvis_pitch_deg)

  # legs
  A_hip, A_knee = _deg(A_hip_deg), _deg(A_knee_deg)
  th['right_hip_pitch']  = A_hip*np.sin(w*t)
  th['left_hip_pitch']   = -A_hip*np.sin(w*t)
  th['right_knee_pitch'] = 0.5*A_knee*(1.0 - np.cos(w*t))
  th['left_knee_pitch']  = 0.5*A_knee*(1.0 - np.cos(w*t + np.pi))

  # arms
  A_y, A_e = _deg(A_sh_yaw_deg), _deg(A_elbow_deg)
  th['right_shoulder_yaw'] = A_y*np.sin(w*t + np.pi)
  th['left_shoulder_yaw']  = A_y*np.sin(w*t)
  th['right_elbow_pitch']  = 0.6*A_e*(1.0 - np.cos(w*t + np.pi))
  th['left_elbow_pitch']   = 0.6*A_e*(1.0 - np.cos(w*t))

  return th


def angles_turn_in_place(t: float, turn_rate_deg_s: float = 60) -> Pose:
  return {'pelvis_yaw': _deg(turn_rate_deg_s) * t}


# ---- root translations ---------------------------------------------------

def root_walk(t: float, speed: float = 1.0, f: float = 1.2) -> Pose:
  w = 2.0*np.pi*f
  return {'pelvis_tx': speed*t, 'pelvis_ty': 0.03*np.sin(w*t+np.pi/2),
          'pelvis_tz': 0.9 + 0.02*np.sin(2*w*t)}


def root_run(t: float, speed: float = 3.0, f: float = 2.4) -> Pose:
  w = 2.0*np.pi*f
  return {'pelvis_tx': speed*t, 'pelvis_ty': 0.04*np.sin(w*t+np.pi/2),
          'pelvis_tz': 0.9 + 0.05*np.maximum(0.0, np.sin(2*w*t))}


def root_turn_in_place(t: float) -> Pose:
  return {'pelvis_tx': 0.0, 'pelvis_ty': 0.0, 'pelvis_tz': 0.9}


# ---- factory -------------------------------------------------------------

def make_motion(kind: str, **kw) -> Callable[[float], Pose]:
  """Return t -> coordinate values (radians / meters) for the human skeleton."""
  kind = kind.lower()
  if kind == "walk":
    f = kw.get("f", 1.2)
    speed = kw.get("speed", 1.0)
    return lambda t: {
      **angles_walk(
        t, f=f,
        A_hip_deg=kw.get("A_hip_deg", 30),
        A_knee_deg=kw.get("A_knee_deg", 45),
        A_sh_yaw_deg=kw.get("A_sh_yaw_deg", 25),
        A_sh_roll_deg=kw.get("A_sh_roll_deg", 15),
        A_elbow_deg=kw.get("A_elbow_deg", 25)
      ),
      **root_walk(t, speed=speed, f=f),
    }

  if kind == "run":
    f = kw.get("f", 2.4)
    speed = kw.get("speed", 3.0)
    return lambda t: {
      **angles_run(
        t, f=f,
        A_hip_deg=kw.get("A_hip_deg", 45),
        A_knee_deg=kw.get("A_knee_deg", 75),
        A_sh_yaw_deg=kw.get("A_sh_yaw_deg", 40),
        A_elbow_deg=kw.get("A_elbow_deg", 40),
        pelvis_pitch_deg=kw.get("pelvis_pitch_deg", 5)
      ),
      **root_run(t, speed=speed, f=f),
    }

  if kind == "turn":
    return lambda t: {
      **angles_turn_in_place(t, turn_rate_deg_s=kw.get("turn_rate_deg_s", 60)),
      **root_turn_in_place(t),
    }

  raise ValueError(f"Unknown motion kind: {kind}. Try one of: walk, run, turn.")


# ---- synthetic trials ----------------------------------------------------

@dataclass
class SyntheticTrial:
  table: MarkerTable
  truth: np.ndarray            # (T, n_coordinates) ground-truth coordinate values
  coordinate_names: List[str]
  marker_names: List[str]


def make_synthetic_trial(
  skel: HumanSkeleton,
  kind: str = "walk",
  *,
  n_frames: int = 60,
  fps: float = 30.0,
  noise_std: float = 0.0,
  dropout: float = 0.0,
  seed: int = 0,
  motion_kw: Optional[Dict] = None,
) -> SyntheticTrial:
  """Drive the skeleton through a motion and record its markers.

  Gaussian noise (meters) is added to every marker sample, and each
  marker-frame is independently replaced by NaN with probability ``dropout``.
  The skeleton is reset to its default pose afterwards.
  """
  rng = np.random.default_rng(seed)
  motion = make_motion(kind, **(motion_kw or {}))
  names = skel.marker_names()
  coord_names = skel.coordinate_names()
  times = np.arange(n_frames, dtype=float) / fps

  markers = np.zeros((n_frames, len(names), 3))
  truth = np.zeros((n_frames, len(coord_names)))
  for fidx, t in enumerate(times):
    skel.reset()
    skel.set_pose(motion(t))
    markers[fidx] = skel.marker_positions(names)
    truth[fidx] = [skel.get_value(n) for n in coord_names]
  skel.reset()

  if noise_std > 0.0:
    markers += rng.normal(0.0, noise_std, size=markers.shape)
  if dropout > 0.0:
    missing = rng.random((n_frames, len(names))) < dropout
    markers[missing] = np.nan

  table = MarkerTable.from_markers(times, names, markers)
  return SyntheticTrial(table, truth, coord_names, names)
