from __future__ import annotations
import numpy as np
from typing import Dict, List, Sequence, Tuple
from .geometry import Geometry3D as G


class MarkerTemplate:
  """Per-bone (t, phi) sampling template, attached to a model as local marker offsets."""

  @staticmethod
  def make_template(
    bones_idx: Sequence[Tuple[int, int]],
    *,
    markers_per_bone: int = 3,
    geom: str = "cylinder",
    seed: int = 0,
  ) -> Dict:
    if geom not in ("segment", "cylinder"):
      raise ValueError("geom must be 'segment' or 'cylinder'")
    rng = np.random.default_rng(seed)
    ts = np.linspace(0.2, 0.9, markers_per_bone)
    template = []
    for _pair in bones_idx:
      rot_off = rng.random() * 2.0 * np.pi
      bone_entries = []
      for k, t in enumerate(ts):
        phi = (2.0 * np.pi * k / markers_per_bone) + rot_off
        bone_entries.append((float(t), float(phi)))
      template.append(bone_entries)
    return {"geom": geom, "entries": template, "markers_per_bone": markers_per_bone}

  @staticmethod
  def attach(skel, template: Dict) -> List[str]:
    """Add one marker per template entry to the bone's parent-joint body.

    Marker ``<bone>_<k>`` sits at fraction t along the bone, pushed off the bone
    axis by the bone radius (``cylinder``) or left on the axis (``segment``).
    """
    radii = skel.bone_radii()
    names: List[str] = []
    for bi, (ja, _jb) in enumerate(skel.BONES_IDX):
      a = np.zeros(3)
      b = skel.bone_vector(bi)
      R = float(radii[bi]) if template["geom"] == "cylinder" else 0.0
      for k, (t, phi) in enumerate(template["entries"][bi]):
        name = f"{skel.BONE_NAMES[bi]}_{k}"
        skel.add_marker(name, skel.JOINT_NAMES[ja], G.ring_point(a, b, t, phi, R))
        names.append(name)
    return names
