"""
Ball hypotheses for multi-hypothesis ball tracking.

A hypothesis is one candidate identity of the ball. It keeps a moving and a
resting model of the same physical ball side by side and decides per query
which of the two explains the ball's motion better.

Classes:
    BallPosition: Selected position and velocity of a hypothesis
    HypotheticalBallPosition: Position of a hypothesis below the output threshold
    BallHypothesis: Moving/resting model pair with validity and last update time
"""

import math
from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

from ball_tracking.tracking.kalman_filters import GaussianState
from ball_tracking.tracking.motion_models import MovingModel, RestingModel
from ball_tracking.utils.transforms import Isometry2

# Validity gained per matched measurement
MEASUREMENT_REWARD = 1.0


@dataclass
class BallPosition:
    """
    Ball estimate handed to consumers.

    Attributes:
        position: Ground position [x, y] (m)
        velocity: Ground velocity [vx, vy] (m/s), zero for a resting ball
        last_seen: Time of the last matched detection (s)
    """
    position: np.ndarray
    velocity: np.ndarray
    last_seen: float


@dataclass
class HypotheticalBallPosition:
    """Position of a hypothesis not yet trusted enough to be reported."""
    position: np.ndarray
    validity: float


class BallHypothesis:
    """
    One tracked ball candidate.

    Attributes:
        moving: Constant-velocity model
        resting: Constant-position model
        validity: Confidence score, +1 per matched measurement, decays each cycle
        last_update: Time of the last matched detection (s)
    """

    def __init__(
        self,
        moving: MovingModel,
        resting: RestingModel,
        last_update: float,
        validity: float = MEASUREMENT_REWARD,
    ):
        self.moving = moving
        self.resting = resting
        self.last_update = float(last_update)
        self.validity = float(validity)

    @classmethod
    def spawn(
        cls,
        detection_time: float,
        position: np.ndarray,
        moving_covariance: np.ndarray,
        resting_covariance: np.ndarray,
    ) -> 'BallHypothesis':
        """
        Create a hypothesis at a detected position with zero velocity.

        Args:
            detection_time: Time of the detection (s)
            position: Detected ground position [x, y]
            moving_covariance: Initial moving model covariance (4x4)
            resting_covariance: Initial resting model covariance (2x2)
        """
        return cls(
            moving=MovingModel.from_position(position, moving_covariance),
            resting=RestingModel.from_position(position, resting_covariance),
            last_update=detection_time,
        )

    def is_resting(self, velocity_threshold: float) -> bool:
        """Whether the resting model is authoritative."""
        return self.moving.speed < velocity_threshold

    def selected_position(self, velocity_threshold: float) -> BallPosition:
        """
        Ball estimate of the model that currently explains the ball best.

        Args:
            velocity_threshold: Speed below which the ball counts as resting (m/s)

        Returns:
            Resting position with zero velocity, or moving position and velocity
        """
        if self.is_resting(velocity_threshold):
            return BallPosition(
                position=self.resting.position,
                velocity=np.zeros(2),
                last_seen=self.last_update,
            )
        return BallPosition(
            position=self.moving.position,
            velocity=self.moving.velocity,
            last_seen=self.last_update,
        )

    def predict(
        self,
        dt: float,
        last_to_current_odometry: Isometry2,
        velocity_decay: float,
        moving_process_noise: np.ndarray,
        resting_process_noise: np.ndarray,
        velocity_threshold: float,
    ) -> None:
        """
        Advance both models into the current frame and time.

        While the moving model is slower than the threshold, the resting model
        follows its position so that switching models does not jump.
        """
        self.moving.predict(dt, last_to_current_odometry, velocity_decay, moving_process_noise)
        self.resting.predict(last_to_current_odometry, resting_process_noise)

        if self.is_resting(velocity_threshold):
            self.resting.reset(self.moving.position)

    def update(self, detection_time: float, measurement: np.ndarray, noise: np.ndarray) -> None:
        """
        Incorporate a matched detection into both models.

        Args:
            detection_time: Time of the detection (s)
            measurement: Detected ground position [x, y]
            noise: Measurement noise covariance (2x2)

        Raises:
            ValueError: If the detection is older than the last update
        """
        if detection_time < self.last_update:
            raise ValueError(
                f"Detection at {detection_time:.6f}s is older than last update "
                f"at {self.last_update:.6f}s"
            )

        self.moving.update(measurement, noise)
        self.resting.update(measurement, noise)
        self.last_update = float(detection_time)
        self.validity += MEASUREMENT_REWARD

    def decay(self, factor: float) -> None:
        """
        Scale the validity down.

        Raises:
            RuntimeError: If the validity is no longer a number
        """
        self.validity *= factor
        if math.isnan(self.validity):
            raise RuntimeError(f"Hypothesis validity became NaN (decay factor {factor})")

    def merge(self, other: 'BallHypothesis') -> None:
        """
        Fuse another hypothesis of the same ball into this one.

        Validity and last update time of this hypothesis are kept.
        """
        self.moving.merge(other.moving)
        self.resting.merge(other.resting)

    def copy(self) -> 'BallHypothesis':
        return BallHypothesis(
            moving=self.moving.copy(),
            resting=self.resting.copy(),
            last_update=self.last_update,
            validity=self.validity,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'moving': self.moving.state.to_dict(),
            'resting': self.resting.state.to_dict(),
            'validity': self.validity,
            'last_update': self.last_update,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BallHypothesis':
        """Create BallHypothesis from a dictionary produced by to_dict."""
        return cls(
            moving=MovingModel(GaussianState.from_dict(data['moving'])),
            resting=RestingModel(GaussianState.from_dict(data['resting'])),
            last_update=data['last_update'],
            validity=data['validity'],
        )

    def __repr__(self) -> str:
        x, y = self.moving.position
        return (
            f"BallHypothesis(position=({x:.2f}, {y:.2f}), "
            f"speed={self.moving.speed:.2f}, validity={self.validity:.2f})"
        )
