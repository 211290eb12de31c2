from __future__ import annotations
import numpy as np
from typing import Tuple


class Geometry3D:
  """Elementary rotations and bone-local bases."""

  # ---- Rotations --------------------------------------------------------
  @staticmethod
  def rot_x(theta: float) -> np.ndarray:
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])

  @staticmethod
  def rot_y(theta: float) -> np.ndarray:
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])

  @staticmethod
  def rot_z(theta: float) -> np.ndarray:
    c, s = np.cos(theta), np.sin(theta)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])

  @classmethod
  def axis_rotation(cls, axis: int, theta: float) -> np.ndarray:
    if axis == 0:
      return cls.rot_x(theta)
    if axis == 1:
      return cls.rot_y(theta)
    if axis == 2:
      return cls.rot_z(theta)
    raise ValueError(f"axis must be 0, 1 or 2, got {axis}")

  @staticmethod
  def unit(axis: int) -> np.ndarray:
    e = np.zeros(3)
    e[axis] = 1.0
    return e

  # ---- Perpendicular basis ---------------------------------------------
  @staticmethod
  def perp_basis(u: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    u = u / (np.linalg.norm(u) + 1e-12)
    tmp = np.array([1.0, 0.0, 0.0]) if abs(u[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
    n1 = np.cross(u, tmp); n1 /= (np.linalg.norm(n1) + 1e-12)
    n2 = np.cross(u, n1); n2 /= (np.linalg.norm(n2) + 1e-12)
    return n1, n2

  @classmethod
  def ring_point(cls, a: np.ndarray, b: np.ndarray, t: float, phi: float, R: float) -> np.ndarray:
    """Point at fraction t along a->b, pushed radius R off the axis at angle phi."""
    v = b - a
    L = np.linalg.norm(v)
    c = a + t * v
    if L < 1e-9 or R == 0.0:
      return c
    n1, n2 = cls.perp_basis(v / L)
    return c + R * (np.cos(phi) * n1 + np.sin(phi) * n2)
