"""
Multi-hypothesis ball filter.

This module owns the set of ball hypotheses and runs their lifecycle once per
control cycle:

1. Predict every hypothesis into the current frame and time
2. Decay validities depending on whether the ball should be in view
3. Associate detections, update matching hypotheses, spawn new ones
4. Remove stale, invalid or off-field hypotheses and merge duplicates
5. Select the best hypothesis as the ball position

Classes:
    BallFilterOutput: Everything a cycle produces for consumers
    BallFilter: Owner of the hypotheses and their lifecycle

References:
    - Bar-Shalom, Y. "Tracking and Data Association"
    - Blackman, S. "Multiple-Target Tracking with Radar Applications"
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ball_tracking.tracking.data_association import DistanceGate, MeasurementBatch, detection_noise
from ball_tracking.tracking.hypothesis import BallHypothesis, BallPosition, HypotheticalBallPosition
from ball_tracking.tracking.visibility import CameraView, is_in_view
from ball_tracking.utils.config_loader import BallFilterConfig
from ball_tracking.utils.logging_config import get_logger
from ball_tracking.utils.metrics import PerformanceMetrics, timer
from ball_tracking.utils.transforms import Isometry2

logger = get_logger("tracking.filter")


@dataclass
class BallFilterOutput:
    """
    Result of one ball filter cycle.

    Attributes:
        ball_position: Best ball estimate, None if no hypothesis is trusted enough
        removed_hypotheses: Hypotheses removed this cycle
        removed_ball_positions: Positions of removed hypotheses that had been
            trusted (validity at or above the output threshold)
        hypothetical_ball_positions: Hypotheses below the output threshold
        hypotheses: Snapshot of all hypotheses after the cycle
        chooses_resting_model: Whether the best hypothesis uses its resting model
    """
    ball_position: Optional[BallPosition] = None
    removed_hypotheses: List[BallHypothesis] = field(default_factory=list)
    removed_ball_positions: List[np.ndarray] = field(default_factory=list)
    hypothetical_ball_positions: List[HypotheticalBallPosition] = field(default_factory=list)
    hypotheses: List[BallHypothesis] = field(default_factory=list)
    chooses_resting_model: Optional[bool] = None


class BallFilter:
    """
    Multi-hypothesis ball tracker.

    Keeps one hypothesis per plausible ball and runs the complete lifecycle in
    cycle(). The individual steps are exposed as methods for callers that need
    finer control, but cycle() is the only place they are run in order.

    Example:
        >>> ball_filter = BallFilter()
        >>> batch = MeasurementBatch(timestamp=0.0, detections=[BallDetection([1.0, 2.0])])
        >>> output = ball_filter.cycle(now=0.0, delta_time=0.012, measurements=[batch])
    """

    def __init__(self, config: Optional[BallFilterConfig] = None):
        """
        Initialize ball filter.

        Args:
            config: Filter tuning (uses defaults if None)
        """
        self.config = config or BallFilterConfig()
        self._gate: Optional[DistanceGate] = None

        self.hypotheses: List[BallHypothesis] = []
        self.last_cycle_time: Optional[float] = None
        self.last_measurement_time: Optional[float] = None

        # Statistics
        self.cycle_count = 0
        self.total_measurements = 0
        self.total_spawned = 0
        self.total_removed = 0
        self.total_merged = 0
        self.metrics = PerformanceMetrics()

        logger.info(
            f"BallFilter initialized: gate={self.config.measurement_matching_distance}m "
            f"({self.config.gating_policy}), merge={self.config.hypothesis_merge_distance}m, "
            f"timeout={self.config.hypothesis_timeout}s"
        )

    @property
    def velocity_threshold(self) -> float:
        return self.config.resting_ball_velocity_threshold

    # Derived from the config on every use; the config may change between cycles.

    @property
    def moving_process_noise(self) -> np.ndarray:
        return self.config.moving_process_noise_matrix()

    @property
    def resting_process_noise(self) -> np.ndarray:
        return self.config.resting_process_noise_matrix()

    @property
    def initial_moving_covariance(self) -> np.ndarray:
        return self.config.initial_moving_covariance_matrix()

    @property
    def initial_resting_covariance(self) -> np.ndarray:
        return self.config.initial_resting_covariance_matrix()

    @property
    def measurement_noise(self) -> np.ndarray:
        return self.config.measurement_noise_matrix()

    @property
    def gate(self) -> DistanceGate:
        """Detection gate for the current matching distance and policy."""
        distance = self.config.measurement_matching_distance
        policy = self.config.gating_policy
        if self._gate is None or self._gate.matching_distance != distance or self._gate.policy != policy:
            self._gate = DistanceGate(matching_distance=distance, policy=policy)
        return self._gate

    def cycle(
        self,
        now: float,
        delta_time: float,
        last_to_current_odometry: Optional[Isometry2] = None,
        measurements: Sequence[MeasurementBatch] = (),
        cameras: Optional[Sequence[CameraView]] = None,
    ) -> BallFilterOutput:
        """
        Run one complete filter cycle.

        Args:
            now: Current time (s)
            delta_time: Time since the last cycle (s)
            last_to_current_odometry: Robot motion since the last cycle
                (identity if None)
            measurements: Detection batches in chronological order
            cameras: Camera views for the visibility test (all hypotheses count
                as hidden if None)

        Returns:
            BallFilterOutput of this cycle

        Raises:
            ValueError: If time runs backwards
        """
        if self.last_cycle_time is not None and now < self.last_cycle_time:
            raise ValueError(f"Cycle time {now:.6f}s is before previous cycle {self.last_cycle_time:.6f}s")
        if delta_time < 0:
            raise ValueError(f"Negative cycle duration: {delta_time}")

        if last_to_current_odometry is None:
            last_to_current_odometry = Isometry2.identity()

        with timer("cycle", self.metrics):
            self.predict_hypotheses(delta_time, last_to_current_odometry)
            self.decay_hypotheses(cameras)

            for batch in measurements:
                if self.last_measurement_time is not None and batch.timestamp < self.last_measurement_time:
                    raise ValueError(
                        f"Detections at {batch.timestamp:.6f}s arrived after detections "
                        f"at {self.last_measurement_time:.6f}s"
                    )
                self.last_measurement_time = batch.timestamp

                for detection in batch.detections:
                    self.update_with_measurement(batch.timestamp, detection.position)

            removed = self.remove_hypotheses(now)
            output = self._build_output(removed)

        self.last_cycle_time = now
        self.cycle_count += 1

        logger.debug(
            "Cycle {}: {} hypotheses, {} removed, ball={}",
            self.cycle_count,
            len(self.hypotheses),
            len(removed),
            "yes" if output.ball_position else "no",
        )

        return output

    def predict_hypotheses(self, delta_time: float, last_to_current_odometry: Isometry2) -> None:
        """
        Predict all hypotheses forward in time and into the current frame.

        Args:
            delta_time: Time step (s)
            last_to_current_odometry: Robot motion since the last cycle
        """
        moving_process_noise = self.moving_process_noise
        resting_process_noise = self.resting_process_noise

        for hypothesis in self.hypotheses:
            hypothesis.predict(
                delta_time,
                last_to_current_odometry,
                self.config.velocity_decay_factor,
                moving_process_noise,
                resting_process_noise,
                self.velocity_threshold,
            )

    def decay_hypotheses(self, cameras: Optional[Sequence[CameraView]]) -> None:
        """
        Decay all validities, depending on whether the ball should be in view.

        Args:
            cameras: Camera views to test visibility against
        """
        ball_radius = self.config.field_dimensions.ball_radius

        for hypothesis in self.hypotheses:
            position = hypothesis.selected_position(self.velocity_threshold).position
            if is_in_view(position, cameras, ball_radius):
                decay_factor = self.config.visible_validity_exponential_decay_factor
            else:
                decay_factor = self.config.hidden_validity_exponential_decay_factor
            hypothesis.decay(decay_factor)

    def update_with_measurement(
        self,
        detection_time: float,
        position: np.ndarray,
    ) -> Optional[BallHypothesis]:
        """
        Update every matching hypothesis with a detection, or spawn a new one.

        Args:
            detection_time: Time of the detection (s)
            position: Detected ground position [x, y]

        Returns:
            The spawned hypothesis, or None if existing hypotheses matched
        """
        position = np.asarray(position, dtype=float)
        self.total_measurements += 1

        matching = self.gate.find_matching(self.hypotheses, position)

        if not matching:
            return self.spawn_hypothesis(detection_time, position)

        noise = detection_noise(
            position,
            self.measurement_noise,
            self.config.distance_scaled_measurement_noise,
        )
        for hypothesis in matching:
            hypothesis.update(detection_time, position, noise)

        return None

    def spawn_hypothesis(self, detection_time: float, position: np.ndarray) -> BallHypothesis:
        """
        Start tracking a new ball candidate at a detection.

        Args:
            detection_time: Time of the detection (s)
            position: Detected ground position [x, y]

        Returns:
            New hypothesis (already part of the filter)
        """
        hypothesis = BallHypothesis.spawn(
            detection_time,
            position,
            self.initial_moving_covariance,
            self.initial_resting_covariance,
        )
        self.hypotheses.append(hypothesis)
        self.total_spawned += 1

        logger.debug("Spawned hypothesis at ({:.2f}, {:.2f})", position[0], position[1])
        return hypothesis

    def remove_hypotheses(self, now: float) -> List[BallHypothesis]:
        """
        Remove stale, invalid and off-field hypotheses, then merge duplicates.

        A hypothesis is kept if it was updated within the timeout, its validity
        is above the discard threshold and it lies on the field (including the
        border strip). Kept hypotheses are merged greedily, in order, into the
        first earlier kept hypothesis within the merge distance. A merge moves
        the surviving hypothesis, so passes are repeated until no two kept
        hypotheses are closer than the merge distance.

        Args:
            now: Current time (s)

        Returns:
            Removed hypotheses (merged ones are not included)

        Raises:
            ValueError: If a hypothesis was updated after now
        """
        retained = []
        removed = []
        for hypothesis in self.hypotheses:
            if self._should_retain(hypothesis, now):
                retained.append(hypothesis)
            else:
                removed.append(hypothesis)

        deduplicated, merged = self._merge_pass(retained)
        while merged:
            deduplicated, merged = self._merge_pass(deduplicated)

        self.hypotheses = deduplicated
        self.total_removed += len(removed)

        for hypothesis in removed:
            logger.opt(lazy=True).debug("Removed {}", lambda: repr(hypothesis))

        return removed

    def _merge_pass(self, hypotheses: List[BallHypothesis]):
        """One greedy merge pass; returns the survivors and the number of merges."""
        deduplicated: List[BallHypothesis] = []
        merged = 0
        for hypothesis in hypotheses:
            position = hypothesis.selected_position(self.velocity_threshold).position
            existing = next(
                (
                    candidate for candidate in deduplicated
                    if np.linalg.norm(
                        candidate.selected_position(self.velocity_threshold).position - position
                    ) < self.config.hypothesis_merge_distance
                ),
                None,
            )

            if existing is None:
                deduplicated.append(hypothesis)
            else:
                existing.merge(hypothesis)
                merged += 1
                self.total_merged += 1
                logger.opt(lazy=True).debug(
                    "Merged {} into {}", lambda: repr(hypothesis), lambda: repr(existing)
                )

        return deduplicated, merged

    def find_best_hypothesis(self, minimum_validity: float) -> Optional[BallHypothesis]:
        """
        Most valid hypothesis above a validity threshold.

        Args:
            minimum_validity: Validity a hypothesis has to exceed

        Returns:
            Hypothesis with the highest validity, or None

        Raises:
            RuntimeError: If a validity is NaN
        """
        if any(math.isnan(hypothesis.validity) for hypothesis in self.hypotheses):
            raise RuntimeError("Hypothesis with NaN validity")

        candidates = [h for h in self.hypotheses if h.validity > minimum_validity]
        if not candidates:
            return None
        return max(candidates, key=lambda hypothesis: hypothesis.validity)

    def _should_retain(self, hypothesis: BallHypothesis, now: float) -> bool:
        time_since_update = now - hypothesis.last_update
        if time_since_update < 0:
            raise ValueError(
                f"Time has run backwards: now {now:.6f}s, last update {hypothesis.last_update:.6f}s"
            )

        field_dimensions = self.config.field_dimensions
        position = hypothesis.selected_position(self.velocity_threshold).position
        is_inside_field = (
            abs(position[0]) < field_dimensions.length / 2.0 + field_dimensions.border_strip_width
            and abs(position[1]) < field_dimensions.width / 2.0 + field_dimensions.border_strip_width
        )

        return (
            time_since_update < self.config.hypothesis_timeout
            and hypothesis.validity > self.config.validity_discard_threshold
            and is_inside_field
        )

    def _build_output(self, removed: List[BallHypothesis]) -> BallFilterOutput:
        output_threshold = self.config.validity_output_threshold

        best = self.find_best_hypothesis(output_threshold)

        removed_ball_positions = [
            hypothesis.selected_position(self.velocity_threshold).position
            for hypothesis in removed
            if hypothesis.validity >= output_threshold
        ]

        hypothetical_ball_positions = [
            HypotheticalBallPosition(
                position=hypothesis.selected_position(self.velocity_threshold).position,
                validity=hypothesis.validity,
            )
            for hypothesis in self.hypotheses
            if hypothesis.validity < output_threshold
        ]

        return BallFilterOutput(
            ball_position=best.selected_position(self.velocity_threshold) if best else None,
            removed_hypotheses=removed,
            removed_ball_positions=removed_ball_positions,
            hypothetical_ball_positions=hypothetical_ball_positions,
            hypotheses=[hypothesis.copy() for hypothesis in self.hypotheses],
            chooses_resting_model=best.is_resting(self.velocity_threshold) if best else None,
        )

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get filter statistics.

        Returns:
            Dictionary of lifecycle counters and cycle timing
        """
        return {
            'cycle_count': self.cycle_count,
            'active_hypotheses': len(self.hypotheses),
            'total_measurements': self.total_measurements,
            'total_spawned': self.total_spawned,
            'total_removed': self.total_removed,
            'total_merged': self.total_merged,
            'cycle_time': self.metrics.get_stats("cycle"),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert filter state to a dictionary for recording."""
        return {
            'hypotheses': [hypothesis.to_dict() for hypothesis in self.hypotheses],
            'last_cycle_time': self.last_cycle_time,
            'last_measurement_time': self.last_measurement_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: Optional[BallFilterConfig] = None) -> 'BallFilter':
        """Restore a filter recorded with to_dict."""
        ball_filter = cls(config)
        ball_filter.hypotheses = [BallHypothesis.from_dict(entry) for entry in data['hypotheses']]
        ball_filter.last_cycle_time = data.get('last_cycle_time')
        ball_filter.last_measurement_time = data.get('last_measurement_time')
        return ball_filter

    def reset(self):
        """Drop all hypotheses and statistics."""
        self.hypotheses = []
        self.last_cycle_time = None
        self.last_measurement_time = None
        self.cycle_count = 0
        self.total_measurements = 0
        self.total_spawned = 0
        self.total_removed = 0
        self.total_merged = 0
        self.metrics.reset()

        logger.info("BallFilter reset")

    def __repr__(self) -> str:
        return (
            f"BallFilter("
            f"hypotheses={len(self.hypotheses)}, "
            f"cycles={self.cycle_count})"
        )
