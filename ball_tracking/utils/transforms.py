"""
Planar rigid transforms for the robot's ground frame.
Handles re-expressing positions from the previous cycle's frame in the current one.
"""

from dataclasses import dataclass, field
from typing import Sequence

import numpy as np


def rotation_matrix_2d(angle: float) -> np.ndarray:
    """
    Build a 2x2 counter-clockwise rotation matrix.

    Args:
        angle: Rotation angle (radians)

    Returns:
        Rotation matrix (2x2)
    """
    cos_angle = np.cos(angle)
    sin_angle = np.sin(angle)

    return np.array([
        [cos_angle, -sin_angle],
        [sin_angle, cos_angle],
    ])


@dataclass
class Isometry2:
    """
    Rigid 2D transform: rotation followed by translation.

    Maps a point p to R(angle) @ p + translation. Used as the
    last-to-current odometry between two consecutive control cycles.

    Attributes:
        angle: Rotation angle (radians)
        translation: Translation [x, y] (m)
    """
    angle: float = 0.0
    translation: np.ndarray = field(default_factory=lambda: np.zeros(2))

    def __post_init__(self):
        self.angle = float(self.angle)
        self.translation = np.asarray(self.translation, dtype=float).reshape(2)

    @classmethod
    def identity(cls) -> 'Isometry2':
        """Transform that leaves every point unchanged."""
        return cls()

    @classmethod
    def from_pose(cls, x: float, y: float, angle: float) -> 'Isometry2':
        """Create a transform from a planar pose (x, y, heading)."""
        return cls(angle=angle, translation=np.array([x, y]))

    @property
    def rotation(self) -> np.ndarray:
        """Rotation part as a 2x2 matrix."""
        return rotation_matrix_2d(self.angle)

    def inverse(self) -> 'Isometry2':
        """Transform undoing this one."""
        inverse_rotation = rotation_matrix_2d(-self.angle)
        return Isometry2(angle=-self.angle, translation=-(inverse_rotation @ self.translation))

    def transform_point(self, point: Sequence[float]) -> np.ndarray:
        """Apply rotation and translation to a point."""
        return self.rotation @ np.asarray(point, dtype=float) + self.translation

    def transform_vector(self, vector: Sequence[float]) -> np.ndarray:
        """Apply only the rotation (for velocities and directions)."""
        return self.rotation @ np.asarray(vector, dtype=float)

    def __matmul__(self, other: 'Isometry2') -> 'Isometry2':
        """Compose transforms: (self @ other)(p) == self(other(p))."""
        return Isometry2(
            angle=self.angle + other.angle,
            translation=self.rotation @ other.translation + self.translation,
        )
