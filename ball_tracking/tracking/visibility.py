"""
Visibility of ball hypotheses in the robot's cameras.

A hypothesis that should be in view of a camera but is not detected loses
confidence at a different rate than one that is out of view. This module
decides whether a ground position would show up in a camera image: its
projection has to land inside the image and above the robot's own limbs
(arms and legs occluding the lower part of the image).

Classes:
    Limb: Projected outline of an occluding robot limb in pixel coordinates
    CameraView: Projection and occluders of one camera at one point in time
    PinholeCamera: Minimal pinhole projection of a camera mounted on the robot

Functions:
    is_above_limbs: Check that a pixel is not hidden behind any limb
    is_visible_to_camera: Check that a ground position shows up in one camera
    is_in_view: Check that a ground position shows up in any camera
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np

# Image size of the robot's cameras (pixels)
IMAGE_WIDTH = 640
IMAGE_HEIGHT = 480

# Maps (ground position [x, y], elevation) to a pixel [u, v], or None if the
# point cannot be projected (e.g. behind the camera)
Projection = Callable[[np.ndarray, float], Optional[np.ndarray]]


@dataclass
class Limb:
    """
    Occluding limb as a polygon in pixel coordinates.

    Points are ordered by increasing x; pixel y grows downwards, so everything
    below the polygon's upper edge is hidden.
    """
    pixel_polygon: np.ndarray

    def __post_init__(self):
        self.pixel_polygon = np.asarray(self.pixel_polygon, dtype=float).reshape(-1, 2)


def is_above_limbs(pixel: np.ndarray, limbs: Sequence[Limb]) -> bool:
    """
    Check that a pixel is not covered by any limb.

    For each limb, the first polygon segment spanning the pixel's column is
    interpolated; the pixel is hidden if it lies below that edge. A limb not
    spanning the pixel's column does not hide it.

    Args:
        pixel: Pixel position [u, v]
        limbs: Projected limbs of the camera

    Returns:
        True if the pixel is above every limb
    """
    u, v = float(pixel[0]), float(pixel[1])

    for limb in limbs:
        polygon = limb.pixel_polygon
        for start, end in zip(polygon[:-1], polygon[1:]):
            if not (start[0] <= u <= end[0]):
                continue
            if abs(end[0] - start[0]) < np.finfo(float).eps:
                edge = min(start[1], end[1])
            else:
                interpolation = (u - start[0]) / (end[0] - start[0])
                edge = end[1] * interpolation + start[1] * (1.0 - interpolation)
            if edge < v:
                return False
            break

    return True


@dataclass
class CameraView:
    """
    One camera as seen by the ball filter.

    Attributes:
        name: Camera identifier (e.g. 'top', 'bottom')
        project: Ground-to-pixel projection
        limbs: Limbs occluding this camera's image
        image_width: Image width (pixels)
        image_height: Image height (pixels)
    """
    name: str
    project: Projection
    limbs: List[Limb] = field(default_factory=list)
    image_width: int = IMAGE_WIDTH
    image_height: int = IMAGE_HEIGHT


def is_visible_to_camera(position: np.ndarray, camera: CameraView, ball_radius: float) -> bool:
    """
    Check whether a ball at a ground position would appear in a camera image.

    Args:
        position: Ground position of the ball [x, y]
        camera: Camera to test
        ball_radius: Ball radius, the height of the ball's center (m)

    Returns:
        True if the ball center projects into the image above all limbs
    """
    pixel = camera.project(np.asarray(position, dtype=float), ball_radius)
    if pixel is None:
        return False

    u, v = float(pixel[0]), float(pixel[1])
    if not (0.0 <= u < camera.image_width and 0.0 <= v < camera.image_height):
        return False

    return is_above_limbs(pixel, camera.limbs)


def is_in_view(position: np.ndarray, cameras: Optional[Sequence[CameraView]], ball_radius: float) -> bool:
    """Check whether any camera would see a ball at a ground position."""
    if not cameras:
        return False
    return any(is_visible_to_camera(position, camera, ball_radius) for camera in cameras)


class PinholeCamera:
    """
    Pinhole camera mounted on the robot.

    The camera sits at a fixed position in the robot's ground frame, looks along
    its yaw direction and is tilted down by its pitch. Lens distortion is ignored.

    Example:
        >>> camera = PinholeCamera(height=0.5, pitch=np.radians(20))
        >>> camera.project(np.array([1.5, 0.0]), 0.05)
    """

    def __init__(
        self,
        height: float,
        pitch: float,
        focal_length: float = 550.0,
        optical_center: Sequence[float] = (IMAGE_WIDTH / 2, IMAGE_HEIGHT / 2),
        image_size: Sequence[int] = (IMAGE_WIDTH, IMAGE_HEIGHT),
        yaw: float = 0.0,
        position: Sequence[float] = (0.0, 0.0),
    ):
        """
        Initialize camera.

        Args:
            height: Camera height above ground (m)
            pitch: Downward tilt (radians)
            focal_length: Focal length (pixels)
            optical_center: Principal point [u, v] (pixels)
            image_size: Image (width, height) (pixels)
            yaw: Heading relative to the robot's x axis (radians)
            position: Camera position [x, y] in the ground frame (m)
        """
        self.height = height
        self.pitch = pitch
        self.focal_length = focal_length
        self.optical_center = np.asarray(optical_center, dtype=float)
        self.image_size = tuple(image_size)
        self.yaw = yaw
        self.position = np.asarray(position, dtype=float)

    def project(self, ground_position: np.ndarray, elevation: float = 0.0) -> Optional[np.ndarray]:
        """
        Project a point above the ground into the image.

        Args:
            ground_position: Point [x, y] in the ground frame (m)
            elevation: Height of the point above ground (m)

        Returns:
            Pixel [u, v], or None if the point is behind the camera
        """
        relative = np.asarray(ground_position, dtype=float) - self.position
        cos_yaw, sin_yaw = np.cos(self.yaw), np.sin(self.yaw)
        forward = cos_yaw * relative[0] + sin_yaw * relative[1]
        left = -sin_yaw * relative[0] + cos_yaw * relative[1]
        up = elevation - self.height

        cos_pitch, sin_pitch = np.cos(self.pitch), np.sin(self.pitch)
        depth = forward * cos_pitch - up * sin_pitch
        camera_up = forward * sin_pitch + up * cos_pitch

        if depth <= 1e-9:
            return None

        return np.array([
            self.optical_center[0] - self.focal_length * left / depth,
            self.optical_center[1] - self.focal_length * camera_up / depth,
        ])

    def view(self, name: str, limbs: Optional[List[Limb]] = None) -> CameraView:
        """Wrap this camera as a CameraView for the ball filter."""
        return CameraView(
            name=name,
            project=self.project,
            limbs=list(limbs or []),
            image_width=self.image_size[0],
            image_height=self.image_size[1],
        )
