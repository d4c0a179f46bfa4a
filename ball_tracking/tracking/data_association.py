"""
Data association for ball detections.

This module decides which ball hypotheses a detection belongs to. Association
is a plain spatial gate: a detection matches every hypothesis whose moving or
resting position (depending on the gating policy) lies within the matching
distance. Ambiguous detections update all matching hypotheses.

Classes:
    BallDetection: One detected ball on the ground
    MeasurementBatch: Detections sharing one detection time
    DistanceGate: Euclidean gating against hypothesis positions

Functions:
    detection_noise: Measurement noise covariance for a detection
"""

from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from ball_tracking.tracking.hypothesis import BallHypothesis
from ball_tracking.utils.logging_config import get_logger

logger = get_logger("tracking.association")

GATING_POLICIES = ("both", "moving", "resting")


@dataclass
class BallDetection:
    """
    A ball seen by the vision pipeline.

    Attributes:
        position: Ground position [x, y] (m)
        camera: Name of the camera that saw the ball
    """
    position: np.ndarray
    camera: str = "bottom"

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=float).reshape(2)


@dataclass
class MeasurementBatch:
    """
    Ball detections taken at one point in time, possibly from several cameras.

    Attributes:
        timestamp: Detection time (s)
        detections: Detected balls
    """
    timestamp: float
    detections: List[BallDetection] = field(default_factory=list)

    def __post_init__(self):
        self.detections = [
            detection if isinstance(detection, BallDetection) else BallDetection(detection)
            for detection in self.detections
        ]


def detection_noise(
    position: np.ndarray,
    base_noise: np.ndarray,
    distance_scaled: bool = True,
) -> np.ndarray:
    """
    Measurement noise covariance for a detection.

    Detections far away from the robot are less accurate, so the base noise
    grows with the squared distance of the detection.

    Args:
        position: Detected ground position [x, y]
        base_noise: Base measurement noise covariance (2x2)
        distance_scaled: Scale the base noise by |position|²

    Returns:
        Measurement noise covariance (2x2)
    """
    if not distance_scaled:
        return base_noise
    return base_noise * float(np.dot(position, position))


class DistanceGate:
    """
    Euclidean validation gate between detections and hypotheses.

    The gating policy selects which model positions are tested:
    'both' matches if either the moving or the resting position is close
    enough, 'moving' and 'resting' test only that model.
    """

    def __init__(self, matching_distance: float, policy: str = "both"):
        """
        Initialize the gate.

        Args:
            matching_distance: Maximum distance between detection and hypothesis (m)
            policy: One of 'both', 'moving', 'resting'
        """
        if policy not in GATING_POLICIES:
            raise ValueError(f"Unknown gating policy: {policy}")
        self.matching_distance = matching_distance
        self.policy = policy
        logger.debug(f"DistanceGate initialized (distance: {matching_distance}, policy: {policy})")

    def distance(self, hypothesis: BallHypothesis, position: np.ndarray) -> float:
        """Smallest distance between a detection and the gated model positions."""
        distances = []
        if self.policy in ("both", "moving"):
            distances.append(np.linalg.norm(hypothesis.moving.position - position))
        if self.policy in ("both", "resting"):
            distances.append(np.linalg.norm(hypothesis.resting.position - position))
        return float(min(distances))

    def matches(self, hypothesis: BallHypothesis, position: np.ndarray) -> bool:
        """Check if a detection is within the gate of a hypothesis."""
        return self.distance(hypothesis, position) < self.matching_distance

    def find_matching(
        self,
        hypotheses: Sequence[BallHypothesis],
        position: np.ndarray,
    ) -> List[BallHypothesis]:
        """
        All hypotheses a detection could belong to.

        Args:
            hypotheses: Candidate hypotheses
            position: Detected ground position [x, y]

        Returns:
            Matching hypotheses in their original order
        """
        return [hypothesis for hypothesis in hypotheses if self.matches(hypothesis, position)]
