"""
Synthetic ball scenarios for exercising the ball filter.

Simulates a ball rolling out on the field while the robot walks and turns,
and produces what the filter would receive each control cycle: the
last-to-current odometry, noisy ball detections (with missed detections and
false positives) and the camera views, together with ground truth.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ball_tracking.tracking.data_association import BallDetection, MeasurementBatch
from ball_tracking.tracking.visibility import CameraView, PinholeCamera, is_visible_to_camera
from ball_tracking.utils.config_loader import SimulationConfig
from ball_tracking.utils.logging_config import get_logger
from ball_tracking.utils.transforms import Isometry2

logger = get_logger("simulation")


@dataclass
class ScenarioFrame:
    """
    Filter inputs and ground truth of one control cycle.

    Attributes:
        time: Cycle time (s)
        delta_time: Time since the previous cycle (s)
        odometry: Last-to-current odometry of the robot
        measurements: Detection batches of this cycle
        cameras: Camera views at this cycle
        true_position: True ball position in the current ground frame [x, y]
        true_velocity: True ball velocity in the current ground frame [vx, vy]
        ball_in_view: Whether the true ball is visible to the camera
    """
    time: float
    delta_time: float
    odometry: Isometry2
    measurements: List[MeasurementBatch] = field(default_factory=list)
    cameras: List[CameraView] = field(default_factory=list)
    true_position: np.ndarray = field(default_factory=lambda: np.zeros(2))
    true_velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))
    ball_in_view: bool = False


class GaussianNoise:
    """
    Gaussian (normal) noise model for detected positions.

    Assumes independent, identically distributed noise per axis.
    """

    def __init__(self, std_dev: float, rng: np.random.Generator):
        """
        Initialize Gaussian noise model.

        Args:
            std_dev: Standard deviation (m)
            rng: Random generator shared with the scenario
        """
        self.std_dev = std_dev
        self.rng = rng

    def add_noise(self, measurement: np.ndarray) -> np.ndarray:
        """Add Gaussian noise to a measurement."""
        return measurement + self.rng.normal(0.0, self.std_dev, size=measurement.shape)


class BallScenario:
    """
    Rolling ball seen by a walking robot.

    Example:
        >>> scenario = BallScenario(SimulationConfig(duration_seconds=5.0))
        >>> frames = scenario.generate()
        >>> frames[0].measurements
    """

    def __init__(self, config: Optional[SimulationConfig] = None, camera: Optional[PinholeCamera] = None):
        """
        Initialize scenario.

        Args:
            config: Scenario parameters (uses defaults if None)
            camera: Robot camera; defaults to a forward-looking camera at 0.5 m
        """
        self.config = config or SimulationConfig()
        self.camera = camera or PinholeCamera(height=0.5, pitch=np.radians(20.0))
        self.rng = np.random.default_rng(self.config.seed)
        self.noise = GaussianNoise(self.config.detection_noise_std, self.rng)

        logger.info(
            f"BallScenario: {self.config.duration_seconds:.1f}s at "
            f"{1.0 / self.config.cycle_time:.0f}Hz, seed={self.config.seed}"
        )

    def generate(self) -> List[ScenarioFrame]:
        """
        Simulate the whole scenario.

        Returns:
            One frame per control cycle
        """
        config = self.config
        dt = config.cycle_time
        n_cycles = int(round(config.duration_seconds / dt))

        ball_position = np.array(config.ball_start_position, dtype=float)
        ball_velocity = np.array(config.ball_start_velocity, dtype=float)
        robot_pose = Isometry2.identity()
        camera_view = self.camera.view("top")

        frames = []
        n_detections = 0
        n_false_positives = 0

        for cycle in range(n_cycles):
            time = cycle * dt

            if cycle > 0:
                ball_velocity = ball_velocity * np.exp(-config.ball_friction * dt)
                ball_position = ball_position + ball_velocity * dt

            last_pose = robot_pose
            if cycle > 0:
                step = Isometry2(
                    angle=config.robot_turn_rate * dt,
                    translation=np.array([config.robot_forward_speed * dt, 0.0]),
                )
                robot_pose = robot_pose @ step

            # Maps points from the last robot frame into the current one
            odometry = robot_pose.inverse() @ last_pose

            robot_from_world = robot_pose.inverse()
            true_position = robot_from_world.transform_point(ball_position)
            true_velocity = robot_from_world.transform_vector(ball_velocity)

            in_view = (
                np.linalg.norm(true_position) < config.max_detection_distance
                and is_visible_to_camera(true_position, camera_view, config.ball_radius)
            )

            measurements = []
            if cycle % config.vision_period_cycles == 0:
                detections = []
                if in_view and self.rng.random() < config.detection_probability:
                    detections.append(BallDetection(self.noise.add_noise(true_position), camera="top"))
                    n_detections += 1
                if self.rng.random() < config.false_positive_rate:
                    spurious = np.array([
                        self.rng.uniform(0.5, config.max_detection_distance),
                        self.rng.uniform(-2.0, 2.0),
                    ])
                    detections.append(BallDetection(spurious, camera="top"))
                    n_false_positives += 1
                measurements.append(MeasurementBatch(timestamp=time, detections=detections))

            frames.append(ScenarioFrame(
                time=time,
                delta_time=dt if cycle > 0 else 0.0,
                odometry=odometry,
                measurements=measurements,
                cameras=[camera_view],
                true_position=true_position,
                true_velocity=true_velocity,
                ball_in_view=in_view,
            ))

        logger.info(
            f"Generated {len(frames)} cycles: {n_detections} detections, "
            f"{n_false_positives} false positives"
        )

        return frames
