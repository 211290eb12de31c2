from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .geometry import Geometry3D as G
from .markers import MarkerTemplate

logger = logging.getLogger(__name__)

ROTATIONAL = "rotational"
TRANSLATIONAL = "translational"
GROUND = "ground"


@dataclass
class Body:
  name: str
  parent: Optional[str]
  offset: np.ndarray
  coordinates: List[str] = field(default_factory=list)


@dataclass
class Coordinate:
  name: str
  body: str
  kind: str
  axis: int
  default_value: float = 0.0
  range: Tuple[float, float] = (-np.inf, np.inf)
  locked: bool = False
  clamped: bool = False
  coupled_to: Optional[str] = None
  coupling_ratio: float = 1.0
  value: float = field(init=False)

  def __post_init__(self):
    if self.kind not in (ROTATIONAL, TRANSLATIONAL):
      raise ValueError(f"coordinate '{self.name}': kind must be '{ROTATIONAL}' or '{TRANSLATIONAL}'")
    self.value = float(self.default_value)

  @property
  def constrained(self) -> bool:
    return self.coupled_to is not None


@dataclass
class Marker:
  name: str
  body: str
  offset: np.ndarray


class SkeletonModel:
  """Kinematic tree: bodies, coordinates, markers, and forward kinematics (FK).

  Bodies must be added parent-first. Each body sits at a constant offset in its
  parent's frame; its coordinates (single-axis rotations or translations) are
  applied in declaration order inside that frame.

  FK is recomputed right away when a coordinate is set with ``finalize=True``
  and lazily on the next position query otherwise. ``fk_evaluations`` counts
  recomputations.
  """

  def __init__(self, name: str = "model"):
    self.name = name
    self._bodies: Dict[str, Body] = {GROUND: Body(GROUND, None, np.zeros(3))}
    self._coords: Dict[str, Coordinate] = {}
    self._markers: Dict[str, Marker] = {}
    self._R: Dict[str, np.ndarray] = {}
    self._p: Dict[str, np.ndarray] = {}
    self._dirty = True
    self.fk_evaluations = 0

  # ---- Building ---------------------------------------------------------
  def add_body(self, name: str, parent: str = GROUND, offset: Sequence[float] = (0.0, 0.0, 0.0)) -> Body:
    if name in self._bodies:
      raise ValueError(f"body '{name}' already exists")
    if parent not in self._bodies:
      raise KeyError(f"parent body '{parent}' not found (add parents first)")
    body = Body(name, parent, np.asarray(offset, float).reshape(3))
    self._bodies[name] = body
    self._dirty = True
    return body

  def add_coordinate(
    self,
    name: str,
    body: str,
    kind: str = ROTATIONAL,
    axis: int = 2,
    *,
    default_value: float = 0.0,
    range: Tuple[float, float] = (-np.inf, np.inf),
    locked: bool = False,
    clamped: bool = False,
    coupled_to: Optional[str] = None,
    coupling_ratio: float = 1.0,
  ) -> Coordinate:
    if name in self._coords:
      raise ValueError(f"coordinate '{name}' already exists")
    if coupled_to is not None and coupled_to not in self._coords:
      raise KeyError(f"independent coordinate '{coupled_to}' not found")
    coord = Coordinate(name, body, kind, int(axis), float(default_value), tuple(range),
                       bool(locked), bool(clamped), coupled_to, float(coupling_ratio))
    self._body(body).coordinates.append(name)
    self._coords[name] = coord
    self._dirty = True
    return coord

  def add_marker(self, name: str, body: str, offset: Sequence[float]) -> Marker:
    if name in self._markers:
      raise ValueError(f"marker '{name}' already exists")
    self._body(body)
    marker = Marker(name, body, np.asarray(offset, float).reshape(3))
    self._markers[name] = marker
    return marker

  # ---- Introspection ----------------------------------------------------
  def body_names(self) -> List[str]:
    return [n for n in self._bodies if n != GROUND]

  def parent_of(self, body: str) -> Optional[str]:
    return self._body(body).parent

  def coordinate_names(self) -> List[str]:
    return list(self._coords)

  @property
  def n_coordinates(self) -> int:
    return len(self._coords)

  def coordinate_index(self, name: str) -> int:
    for i, n in enumerate(self._coords):
      if n == name:
        return i
    return -1

  def get_coordinate(self, name: str) -> Coordinate:
    try:
      return self._coords[name]
    except KeyError:
      raise KeyError(f"coordinate '{name}' not found in model '{self.name}'") from None

  def marker_names(self) -> List[str]:
    return list(self._markers)

  def has_marker(self, name: str) -> bool:
    return name in self._markers

  def marker_offset(self, name: str) -> np.ndarray:
    return self._marker(name).offset.copy()

  def marker_body(self, name: str) -> str:
    return self._marker(name).body

  # ---- Pose capability --------------------------------------------------
  def get_value(self, name: str) -> float:
    c = self.get_coordinate(name)
    if c.coupled_to is not None:
      return c.coupling_ratio * self.get_value(c.coupled_to)
    return c.value

  def set_value(self, name: str, value: float, finalize: bool = True) -> bool:
    """Set a coordinate; returns False (and leaves it unchanged) if locked."""
    c = self.get_coordinate(name)
    if c.locked:
      logger.debug("set_value ignored for locked coordinate '%s'", name)
      return False
    v = float(value)
    if c.clamped:
      v = float(np.clip(v, c.range[0], c.range[1]))
    c.value = v
    self._dirty = True
    if finalize:
      self._update_kinematics()
    return True

  def get_default_value(self, name: str) -> float:
    return self.get_coordinate(name).default_value

  def get_clamped(self, name: str) -> bool:
    return self.get_coordinate(name).clamped

  def set_clamped(self, name: str, flag: bool) -> None:
    self.get_coordinate(name).clamped = bool(flag)

  def get_locked(self, name: str) -> bool:
    return self.get_coordinate(name).locked

  def set_locked(self, name: str, flag: bool) -> None:
    self.get_coordinate(name).locked = bool(flag)

  def is_constrained(self, name: str) -> bool:
    return self.get_coordinate(name).constrained

  def set_pose(self, values: Dict[str, float]) -> None:
    """Set several coordinates, finalizing once at the end."""
    for name, v in values.items():
      self.set_value(name, v, finalize=False)
    self._update_kinematics()

  def reset(self) -> None:
    for c in self._coords.values():
      c.value = c.default_value
    self._dirty = True

  # ---- Forward kinematics -----------------------------------------------
  def transform_position(self, body: str, local: Sequence[float]) -> np.ndarray:
    """World position of a point given in a body's local frame."""
    if self._dirty:
      self._update_kinematics()
    if body not in self._R:
      raise KeyError(f"body '{body}' not found in model '{self.name}'")
    return self._p[body] + self._R[body] @ np.asarray(local, float)

  def body_origins(self) -> np.ndarray:
    if self._dirty:
      self._update_kinematics()
    return np.vstack([self._p[b] for b in self.body_names()]) if self.body_names() else np.zeros((0, 3))

  def marker_positions(self, names: Optional[Iterable[str]] = None) -> np.ndarray:
    names = list(self._markers) if names is None else list(names)
    out = np.zeros((len(names), 3))
    for k, n in enumerate(names):
      m = self._marker(n)
      out[k] = self.transform_position(m.body, m.offset)
    return out

  def _update_kinematics(self) -> None:
    self._R = {GROUND: np.eye(3)}
    self._p = {GROUND: np.zeros(3)}
    for name, body in self._bodies.items():
      if body.parent is None:
        continue
      R = self._R[body.parent]
      p = self._p[body.parent] + R @ body.offset
      for cname in body.coordinates:
        c = self._coords[cname]
        q = self.get_value(cname)
        if c.kind == ROTATIONAL:
          R = R @ G.axis_rotation(c.axis, q)
        else:
          p = p + R @ (G.unit(c.axis) * q)
      self._R[name] = R
      self._p[name] = p
    self._dirty = False
    self.fk_evaluations += 1

  # ---- Small helpers ----------------------------------------------------
  def _body(self, name: str) -> Body:
    try:
      return self._bodies[name]
    except KeyError:
      raise KeyError(f"body '{name}' not found in model '{self.name}'") from None

  def _marker(self, name: str) -> Marker:
    try:
      return self._markers[name]
    except KeyError:
      raise KeyError(f"marker '{name}' not found in model '{self.name}'") from None


class HumanSkeleton(SkeletonModel):
  """16-joint humanoid with yaw/pitch/roll joints and bone-surface markers."""

  # ---- Topology ---------------------------------------------------------
  JOINT_NAMES: List[str] = [
    "pelvis", "spine_top", "neck_top", "head_top",
    "right_shoulder", "right_elbow", "right_hand",
    "left_shoulder", "left_elbow", "left_hand",
    "right_hip", "right_knee", "right_foot",
    "left_hip", "left_knee", "left_foot",
  ]

  (
    PELVIS, SPINE_TOP, NECK_TOP, HEAD_TOP,
    RIGHT_SHOULDER, RIGHT_ELBOW, RIGHT_HAND,
    LEFT_SHOULDER, LEFT_ELBOW, LEFT_HAND,
    RIGHT_HIP, RIGHT_KNEE, RIGHT_FOOT,
    LEFT_HIP, LEFT_KNEE, LEFT_FOOT,
  ) = range(16)

  BONES_IDX: List[Tuple[int, int]] = [
    (PELVIS, SPINE_TOP), (SPINE_TOP, NECK_TOP), (NECK_TOP, HEAD_TOP),
    (SPINE_TOP, RIGHT_SHOULDER), (RIGHT_SHOULDER, RIGHT_ELBOW), (RIGHT_ELBOW, RIGHT_HAND),
    (SPINE_TOP, LEFT_SHOULDER), (LEFT_SHOULDER, LEFT_ELBOW), (LEFT_ELBOW, LEFT_HAND),
    (PELVIS, RIGHT_HIP), (RIGHT_HIP, RIGHT_KNEE), (RIGHT_KNEE, RIGHT_FOOT),
    (PELVIS, LEFT_HIP), (LEFT_HIP, LEFT_KNEE), (LEFT_KNEE, LEFT_FOOT),
  ]
  BONE_NAMES: List[str] = [
    "spine", "neck", "head",
    "r_clavicle", "r_upper_arm", "r_forearm",
    "l_clavicle", "l_upper_arm", "l_forearm",
    "r_pelvis", "r_thigh", "r_shank",
    "l_pelvis", "l_thigh", "l_shank",
  ]
  # key into BONE_LENGTHS / BONE_THICKNESS, and unit direction in the parent frame
  BONE_SHAPE: List[Tuple[str, Tuple[float, float, float]]] = [
    ("spine", (0, 0, 1)), ("neck", (0, 0, 1)), ("head", (0, 0, 1)),
    ("shoulder_offset", (0, -1, 0)), ("upper_arm", (0, -1, 0)), ("lower_arm", (0, -1, 0)),
    ("shoulder_offset", (0, 1, 0)), ("upper_arm", (0, 1, 0)), ("lower_arm", (0, 1, 0)),
    ("hip_offset", (0, -1, 0)), ("upper_leg", (0, 0, -1)), ("lower_leg", (0, 0, -1)),
    ("hip_offset", (0, 1, 0)), ("upper_leg", (0, 0, -1)), ("lower_leg", (0, 0, -1)),
  ]

  # ---- Defaults ---------------------------------------------------------
  BONE_LENGTHS: Dict[str, float] = {
    'spine': 0.5, 'neck': 0.1, 'head': 0.1,
    'upper_arm': 0.3, 'lower_arm': 0.25,
    'upper_leg': 0.4, 'lower_leg': 0.4,
    'shoulder_offset': 0.2, 'hip_offset': 0.1,
  }

  BONE_THICKNESS: Dict[str, float] = {
    'spine': 0.10, 'neck': 0.06, 'head': 0.09,
    'upper_arm': 0.045, 'lower_arm': 0.040,
    'upper_leg': 0.070, 'lower_leg': 0.060,
    'shoulder_offset': 0.060, 'hip_offset': 0.065,
  }

  # (yaw, pitch, roll) limits in degrees for joints that carry coordinates
  JOINT_LIMITS_DEG: Dict[str, Tuple[Tuple[float, float], ...]] = {
    "pelvis":         ((-180, 180), (-90, 90), (-90, 90)),
    "spine_top":      ((-60, 60), (-45, 45), (-45, 45)),
    "neck_top":       ((-80, 80), (-60, 60), (-60, 60)),
    "right_shoulder": ((-150, 150), (-150, 150), (-100, 100)),
    "left_shoulder":  ((-150, 150), (-150, 150), (-100, 100)),
    "right_elbow":    ((-45, 45), (0, 150), (-45, 45)),
    "left_elbow":     ((-45, 45), (0, 150), (-45, 45)),
    "right_hip":      ((-70, 70), (-120, 120), (-50, 50)),
    "left_hip":       ((-70, 70), (-120, 120), (-50, 50)),
    "right_knee":     ((-30, 30), (0, 150), (-30, 30)),
    "left_knee":      ((-30, 30), (0, 150), (-30, 30)),
  }
  HINGES = ("right_elbow", "left_elbow", "right_knee", "left_knee")
  AXES = (("yaw", 2), ("pitch", 1), ("roll", 0))

  def __init__(
    self,
    bone_lengths: Optional[Dict[str, float]] = None,
    *,
    pure_hinges: bool = True,
    clamp: bool = False,
    markers_per_bone: int = 3,
    marker_geom: str = "cylinder",
    seed: int = 0,
  ):
    super().__init__(name="human")
    self.bone_lengths = dict(self.BONE_LENGTHS, **(bone_lengths or {}))

    # bodies, parent first (BONES_IDX lists every child after its parent)
    self.add_body(self.JOINT_NAMES[self.PELVIS], GROUND)
    for bi, (ja, jb) in enumerate(self.BONES_IDX):
      key, direction = self.BONE_SHAPE[bi]
      offset = self.bone_lengths[key] * np.asarray(direction, float)
      self.add_body(self.JOINT_NAMES[jb], self.JOINT_NAMES[ja], offset)

    # root: free translation then yaw/pitch/roll
    for ax, suffix in enumerate(("tx", "ty", "tz")):
      self.add_coordinate(f"pelvis_{suffix}", "pelvis", TRANSLATIONAL, ax,
                          range=(-10.0, 10.0), clamped=clamp)
    for joint, limits in self.JOINT_LIMITS_DEG.items():
      for (label, ax), (lo, hi) in zip(self.AXES, limits):
        hinge_lock = pure_hinges and joint in self.HINGES and label != "pitch"
        self.add_coordinate(f"{joint}_{label}", joint, ROTATIONAL, ax,
                            range=(np.deg2rad(lo), np.deg2rad(hi)),
                            locked=hinge_lock, clamped=clamp)

    template = MarkerTemplate.make_template(self.BONES_IDX, markers_per_bone=markers_per_bone,
                                            geom=marker_geom, seed=seed)
    MarkerTemplate.attach(self, template)

  def bone_radii(self) -> np.ndarray:
    return np.array([self.BONE_THICKNESS[key] for key, _ in self.BONE_SHAPE], float)

  def bone_vector(self, bi: int) -> np.ndarray:
    """Child-joint offset of bone ``bi`` in its parent joint's frame."""
    return self._body(self.JOINT_NAMES[self.BONES_IDX[bi][1]]).offset.copy()
