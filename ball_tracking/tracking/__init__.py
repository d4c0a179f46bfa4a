"""
Ball Filter - Multi-Hypothesis Ball Tracking for Legged Soccer Robots

This module estimates the ball's position and velocity in the robot's ground
frame from noisy, intermittent detections using a set of dual-model
(moving/resting) Kalman filter hypotheses.

Components:
- kalman_filters: Gaussian state with linear predict/update
- motion_models: Moving (constant velocity) and resting (constant position) models
- hypothesis: Ball hypothesis pairing both models
- data_association: Detections and distance gating
- visibility: Camera visibility and limb occlusion
- ball_filter: Hypothesis lifecycle orchestration

Example:
    >>> from ball_tracking.tracking import BallFilter, MeasurementBatch
    >>> ball_filter = BallFilter()
    >>> output = ball_filter.cycle(now, delta_time, odometry, measurements)
"""

from .kalman_filters import GaussianState
from .motion_models import MovingModel, RestingModel
from .hypothesis import BallHypothesis, BallPosition, HypotheticalBallPosition
from .data_association import BallDetection, MeasurementBatch, DistanceGate
from .visibility import CameraView, Limb, PinholeCamera
from .ball_filter import BallFilter, BallFilterOutput

__all__ = [
    "GaussianState",
    "MovingModel",
    "RestingModel",
    "BallHypothesis",
    "BallPosition",
    "HypotheticalBallPosition",
    "BallDetection",
    "MeasurementBatch",
    "DistanceGate",
    "CameraView",
    "Limb",
    "PinholeCamera",
    "BallFilter",
    "BallFilterOutput",
]
