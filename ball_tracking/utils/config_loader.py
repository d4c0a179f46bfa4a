"""
Configuration management for the ball tracking system.
Loads YAML configs with validation of all filter tuning parameters.
"""

from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ball_tracking.utils.logging_config import get_logger

logger = get_logger("config")

NoiseEntries = Union[List[float], List[List[float]]]


def covariance_from_entries(value: NoiseEntries, dimension: int, strictly_positive: bool) -> np.ndarray:
    """
    Build and validate a covariance matrix from a diagonal or a full matrix.

    Args:
        value: Diagonal entries (length ``dimension``) or a full square matrix
        dimension: Expected matrix dimension
        strictly_positive: Require positive definiteness instead of
            positive semi-definiteness

    Returns:
        Covariance matrix (dimension x dimension)

    Raises:
        ValueError: If the shape is wrong or the matrix is not a valid covariance
    """
    array = np.asarray(value, dtype=float)

    if array.ndim == 1:
        if array.shape != (dimension,):
            raise ValueError(f"expected {dimension} diagonal entries, got {array.shape[0]}")
        matrix = np.diag(array)
    elif array.ndim == 2:
        if array.shape != (dimension, dimension):
            raise ValueError(f"expected a {dimension}x{dimension} matrix, got {array.shape}")
        if not np.allclose(array, array.T):
            raise ValueError("covariance matrix must be symmetric")
        matrix = array
    else:
        raise ValueError("noise must be a list of diagonal entries or a square matrix")

    if not np.all(np.isfinite(matrix)):
        raise ValueError("covariance entries must be finite")

    eigenvalues = np.linalg.eigvalsh(matrix)
    if strictly_positive and np.any(eigenvalues <= 0.0):
        raise ValueError("covariance matrix must be positive definite")
    if not strictly_positive and np.any(eigenvalues < -1e-12):
        raise ValueError("covariance matrix must be positive semi-definite")

    return matrix


class FieldDimensions(BaseModel):
    """Soccer field geometry (meters)."""

    length: float = Field(9.0, gt=0, description="Field length between the goal lines")
    width: float = Field(6.0, gt=0, description="Field width between the touch lines")
    border_strip_width: float = Field(0.7, ge=0, description="Carpet border outside the lines")
    ball_radius: float = Field(0.05, gt=0, description="Ball radius")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class BallFilterConfig(BaseModel):
    """Tuning parameters of the ball filter."""

    # Dynamics
    velocity_decay_factor: float = Field(0.998, ge=0, le=1, description="Velocity scale applied each prediction")
    process_noise_moving: NoiseEntries = Field(
        [0.001, 0.001, 0.02, 0.02], description="Moving model process noise [x, y, vx, vy]"
    )
    process_noise_resting: NoiseEntries = Field(
        [0.001, 0.001], description="Resting model process noise [x, y]"
    )
    initial_covariance: NoiseEntries = Field(
        [0.5, 0.5, 0.5, 0.5], description="Moving model covariance on spawn (resting uses the position block)"
    )
    measurement_noise: NoiseEntries = Field([0.01, 0.01], description="Detection noise [x, y]")
    distance_scaled_measurement_noise: bool = Field(
        True, description="Scale measurement noise by the squared detection distance"
    )

    # Model selection and association
    resting_ball_velocity_threshold: float = Field(0.05, ge=0, description="Speed below which the ball is resting (m/s)")
    measurement_matching_distance: float = Field(1.0, gt=0, description="Gating distance for association (m)")
    gating_policy: str = Field("both", pattern="^(both|moving|resting)$", description="Sub-models used for gating")
    hypothesis_merge_distance: float = Field(0.5, ge=0, description="Distance below which hypotheses merge (m)")

    # Lifecycle
    hypothesis_timeout: float = Field(2.0, gt=0, description="Seconds without update before removal")
    validity_discard_threshold: float = Field(0.5, ge=0, description="Validity at or below which hypotheses are removed")
    validity_output_threshold: float = Field(2.0, ge=0, description="Validity above which a hypothesis is reported")
    visible_validity_exponential_decay_factor: float = Field(0.98, ge=0, le=1, description="Decay when in view")
    hidden_validity_exponential_decay_factor: float = Field(0.95, ge=0, le=1, description="Decay when out of view")

    field_dimensions: FieldDimensions = Field(default_factory=FieldDimensions)

    class Config:
        """Pydantic config."""
        validate_assignment = True

    @field_validator("process_noise_moving")
    @classmethod
    def _validate_process_noise_moving(cls, value):
        covariance_from_entries(value, 4, strictly_positive=False)
        return value

    @field_validator("process_noise_resting")
    @classmethod
    def _validate_process_noise_resting(cls, value):
        covariance_from_entries(value, 2, strictly_positive=False)
        return value

    @field_validator("initial_covariance")
    @classmethod
    def _validate_initial_covariance(cls, value):
        covariance_from_entries(value, 4, strictly_positive=True)
        return value

    @field_validator("measurement_noise")
    @classmethod
    def _validate_measurement_noise(cls, value):
        covariance_from_entries(value, 2, strictly_positive=True)
        return value

    @model_validator(mode="after")
    def _check_decay_ordering(self):
        if self.hidden_validity_exponential_decay_factor > self.visible_validity_exponential_decay_factor:
            logger.warning(
                f"Hidden decay factor ({self.hidden_validity_exponential_decay_factor}) is laxer than "
                f"visible decay factor ({self.visible_validity_exponential_decay_factor})"
            )
        return self

    def moving_process_noise_matrix(self) -> np.ndarray:
        """Process noise of the moving model (4x4)."""
        return covariance_from_entries(self.process_noise_moving, 4, strictly_positive=False)

    def resting_process_noise_matrix(self) -> np.ndarray:
        """Process noise of the resting model (2x2)."""
        return covariance_from_entries(self.process_noise_resting, 2, strictly_positive=False)

    def initial_moving_covariance_matrix(self) -> np.ndarray:
        """Covariance of a freshly spawned moving model (4x4)."""
        return covariance_from_entries(self.initial_covariance, 4, strictly_positive=True)

    def initial_resting_covariance_matrix(self) -> np.ndarray:
        """Covariance of a freshly spawned resting model (position block, 2x2)."""
        return self.initial_moving_covariance_matrix()[:2, :2]

    def measurement_noise_matrix(self) -> np.ndarray:
        """Base detection noise (2x2), before any distance scaling."""
        return covariance_from_entries(self.measurement_noise, 2, strictly_positive=True)


class SimulationConfig(BaseModel):
    """Configuration for the synthetic ball scenario."""

    duration_seconds: float = Field(10.0, gt=0, description="Scenario duration")
    cycle_time: float = Field(0.012, gt=0, description="Control cycle period (s)")
    vision_period_cycles: int = Field(3, ge=1, description="Control cycles per vision frame")
    seed: Optional[int] = Field(42, description="Random seed for reproducibility")

    # Ball
    ball_start_position: List[float] = Field([2.0, 0.5], min_length=2, max_length=2)
    ball_start_velocity: List[float] = Field([-0.6, 0.2], min_length=2, max_length=2)
    ball_friction: float = Field(0.5, ge=0, description="Exponential velocity decay rate (1/s)")
    ball_radius: float = Field(0.05, gt=0, description="Ball radius (m)")

    # Robot
    robot_forward_speed: float = Field(0.05, description="Robot walking speed (m/s)")
    robot_turn_rate: float = Field(0.1, description="Robot turn rate (rad/s)")

    # Detector
    detection_noise_std: float = Field(0.03, ge=0, description="Detection noise std dev (m)")
    detection_probability: float = Field(0.8, ge=0, le=1, description="Chance a visible ball is detected")
    false_positive_rate: float = Field(0.02, ge=0, le=1, description="Chance of a spurious detection per frame")
    max_detection_distance: float = Field(5.0, gt=0, description="Detector range (m)")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class Config:
    """Main configuration manager."""

    def __init__(self, config_dir: Path = Path("config")):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.ball_filter: Optional[BallFilterConfig] = None
        self.simulation: Optional[SimulationConfig] = None

    def load_all(self):
        """Load all configuration files."""
        self.ball_filter = self.load_config("ball_filter.yaml", BallFilterConfig)
        self.simulation = self.load_config("simulation.yaml", SimulationConfig)

    def load_config(self, filename: str, config_class: type[BaseModel]) -> BaseModel:
        """
        Load and validate a configuration file.

        Args:
            filename: Config file name
            config_class: Pydantic model class for validation

        Returns:
            Validated configuration object

        Example:
            >>> config = Config()
            >>> filter_config = config.load_config("ball_filter.yaml", BallFilterConfig)
            >>> print(f"Merge distance {filter_config.hypothesis_merge_distance} m")
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            logger.debug(f"{filepath} not found, using defaults")
            return config_class()

        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return config_class()

        logger.info(f"Loaded {config_class.__name__} from {filepath}")
        return config_class(**config_dict)

    def save_config(self, config: BaseModel, filename: str):
        """
        Save configuration to YAML file.

        Args:
            config: Configuration object to save
            filename: Output filename
        """
        filepath = self.config_dir / filename
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            yaml.safe_dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)

    def create_default_configs(self):
        """Create default configuration files if they don't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        configs = [
            ("ball_filter.yaml", BallFilterConfig()),
            ("simulation.yaml", SimulationConfig()),
        ]

        for filename, config in configs:
            filepath = self.config_dir / filename
            if not filepath.exists():
                self.save_config(config, filename)
