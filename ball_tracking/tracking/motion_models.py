"""
Motion models of a tracked ball.

Each ball hypothesis carries two competing explanations of the ball's motion:

- MovingModel: constant velocity with exponential velocity decay,
  state [x, y, vx, vy]
- RestingModel: constant position, state [x, y]

Both live in the robot's ground frame, which moves with the robot. Every
prediction therefore first re-expresses the state in the current frame using
the last-to-current odometry before applying the motion model.
"""

import numpy as np

from ball_tracking.tracking.kalman_filters import GaussianState
from ball_tracking.utils.transforms import Isometry2

# Observe [x, y] of a [x, y, vx, vy] state
POSITION_OBSERVATION = np.hstack([np.eye(2), np.zeros((2, 2))])

# Apply a planar translation to the position rows of a [x, y, vx, vy] state
POSITION_CONTROL = POSITION_OBSERVATION.T


class MovingModel:
    """
    Constant-velocity model of a rolling ball.

    Attributes:
        state: Gaussian belief over [x, y, vx, vy]
    """

    def __init__(self, state: GaussianState):
        if state.dimension != 4:
            raise ValueError(f"MovingModel needs a 4D state, got {state.dimension}D")
        self.state = state

    @classmethod
    def from_position(cls, position: np.ndarray, covariance: np.ndarray) -> 'MovingModel':
        """Create a model at rest at a position."""
        mean = np.concatenate([np.asarray(position, dtype=float), np.zeros(2)])
        return cls(GaussianState(mean, covariance))

    @property
    def position(self) -> np.ndarray:
        """Estimated position [x, y]."""
        return self.state.mean[:2].copy()

    @property
    def velocity(self) -> np.ndarray:
        """Estimated velocity [vx, vy]."""
        return self.state.mean[2:].copy()

    @property
    def speed(self) -> float:
        """Magnitude of the estimated velocity."""
        return float(np.linalg.norm(self.state.mean[2:]))

    def predict(
        self,
        dt: float,
        last_to_current_odometry: Isometry2,
        velocity_decay: float,
        process_noise: np.ndarray,
    ) -> None:
        """
        Move the ball into the current frame and advance it by dt.

        Args:
            dt: Time step (seconds)
            last_to_current_odometry: Robot motion since the last cycle
            velocity_decay: Factor applied to the velocity each step
            process_noise: Process noise covariance (4x4)
        """
        constant_velocity = np.array([
            [1.0, 0.0, dt, 0.0],
            [0.0, 1.0, 0.0, dt],
            [0.0, 0.0, velocity_decay, 0.0],
            [0.0, 0.0, 0.0, velocity_decay],
        ])

        rotation = last_to_current_odometry.rotation
        state_rotation = np.zeros((4, 4))
        state_rotation[:2, :2] = rotation
        state_rotation[2:, 2:] = rotation

        self.state.predict(
            constant_velocity @ state_rotation,
            POSITION_CONTROL,
            last_to_current_odometry.translation,
            process_noise,
        )

    def update(self, measurement: np.ndarray, noise: np.ndarray) -> None:
        """
        Correct the state with a detected ball position.

        Args:
            measurement: Detected position [x, y]
            noise: Measurement noise covariance (2x2)
        """
        self.state.update(POSITION_OBSERVATION, measurement, noise)

    def merge(self, other: 'MovingModel') -> None:
        """Fuse another estimate of the same ball into this one."""
        self.state.update(np.eye(4), other.state.mean, other.state.covariance)

    def copy(self) -> 'MovingModel':
        return MovingModel(self.state.copy())


class RestingModel:
    """
    Constant-position model of a ball lying still.

    Attributes:
        state: Gaussian belief over [x, y]
    """

    def __init__(self, state: GaussianState):
        if state.dimension != 2:
            raise ValueError(f"RestingModel needs a 2D state, got {state.dimension}D")
        self.state = state

    @classmethod
    def from_position(cls, position: np.ndarray, covariance: np.ndarray) -> 'RestingModel':
        return cls(GaussianState(np.asarray(position, dtype=float), covariance))

    @property
    def position(self) -> np.ndarray:
        """Estimated position [x, y]."""
        return self.state.mean.copy()

    def predict(self, last_to_current_odometry: Isometry2, process_noise: np.ndarray) -> None:
        """
        Move the ball into the current frame.

        Args:
            last_to_current_odometry: Robot motion since the last cycle
            process_noise: Process noise covariance (2x2)
        """
        self.state.predict(
            last_to_current_odometry.rotation,
            np.eye(2),
            last_to_current_odometry.translation,
            process_noise,
        )

    def update(self, measurement: np.ndarray, noise: np.ndarray) -> None:
        """
        Correct the state with a detected ball position.

        Args:
            measurement: Detected position [x, y]
            noise: Measurement noise covariance (2x2)
        """
        self.state.update(np.eye(2), measurement, noise)

    def merge(self, other: 'RestingModel') -> None:
        """Fuse another estimate of the same ball into this one."""
        self.state.update(np.eye(2), other.state.mean, other.state.covariance)

    def reset(self, position: np.ndarray) -> None:
        """Overwrite the mean, keeping the covariance."""
        self.state.mean = np.array(position, dtype=float).reshape(2)

    def copy(self) -> 'RestingModel':
        return RestingModel(self.state.copy())
