"""
Linear Kalman filter primitives for ball state estimation.

This module provides the Gaussian belief used by every ball model together with
the generic linear predict and update steps operating on it.

Classes:
    GaussianState: Mean vector and covariance matrix of a linear-Gaussian belief

Functions:
    symmetrize: Remove floating-point asymmetry from a covariance matrix

References:
    - Bar-Shalom, Y., et al. "Estimation with Applications to Tracking and Navigation"
    - Simon, D. "Optimal State Estimation"
"""

import numpy as np
from dataclasses import dataclass
from typing import Any, Dict

from scipy.linalg import cho_factor, cho_solve

from ball_tracking.utils.logging_config import get_logger

logger = get_logger("tracking.kalman")


def symmetrize(matrix: np.ndarray) -> np.ndarray:
    """Average a matrix with its transpose."""
    return 0.5 * (matrix + matrix.T)


@dataclass
class GaussianState:
    """
    Linear-Gaussian belief over an N-dimensional state.

    Attributes:
        mean: State estimate (N,)
        covariance: State covariance (N x N), symmetric positive semi-definite
    """
    mean: np.ndarray
    covariance: np.ndarray

    def __post_init__(self):
        self.mean = np.array(self.mean, dtype=float).reshape(-1)
        self.covariance = np.array(self.covariance, dtype=float)
        n = self.mean.shape[0]
        if self.covariance.shape != (n, n):
            raise ValueError(
                f"Covariance shape {self.covariance.shape} does not match state dimension {n}"
            )

    @property
    def dimension(self) -> int:
        """Number of state components."""
        return self.mean.shape[0]

    def predict(
        self,
        state_transition: np.ndarray,
        control_matrix: np.ndarray,
        control: np.ndarray,
        process_noise: np.ndarray,
    ) -> None:
        """
        Propagate the belief through a linear model.

        x ← F x + B u
        P ← F P Fᵀ + Q

        Args:
            state_transition: Transition matrix F (N x N)
            control_matrix: Control matrix B (N x M)
            control: Control input u (M,)
            process_noise: Process noise covariance Q (N x N)
        """
        F = state_transition
        self.mean = F @ self.mean + control_matrix @ np.asarray(control, dtype=float)
        self.covariance = symmetrize(F @ self.covariance @ F.T + process_noise)
        self._check_finite("predict")

    def update(
        self,
        observation_matrix: np.ndarray,
        measurement: np.ndarray,
        measurement_noise: np.ndarray,
    ) -> None:
        """
        Incorporate a linear measurement.

        y = z − H x
        S = H P Hᵀ + R
        K = P Hᵀ S⁻¹
        x ← x + K y
        P ← (I − K H) P

        The covariance is computed in Joseph form, which equals (I − K H) P for
        the optimal gain but keeps P symmetric positive semi-definite.

        Args:
            observation_matrix: Observation matrix H (M x N)
            measurement: Measurement z (M,)
            measurement_noise: Measurement noise covariance R (M x M)

        Raises:
            numpy.linalg.LinAlgError: If the innovation covariance is not
                positive definite
        """
        H = observation_matrix
        P = self.covariance

        innovation = np.asarray(measurement, dtype=float) - H @ self.mean
        innovation_covariance = symmetrize(H @ P @ H.T + measurement_noise)

        # S is symmetric, so Kᵀ = S⁻¹ H P
        factor = cho_factor(innovation_covariance)
        K = cho_solve(factor, H @ P).T

        self.mean = self.mean + K @ innovation

        I_KH = np.eye(self.dimension) - K @ H
        self.covariance = symmetrize(I_KH @ P @ I_KH.T + K @ measurement_noise @ K.T)
        self._check_finite("update")

    def copy(self) -> 'GaussianState':
        """Independent copy of this belief."""
        return GaussianState(self.mean.copy(), self.covariance.copy())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'mean': self.mean.tolist(),
            'covariance': self.covariance.tolist(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GaussianState':
        """Create GaussianState from a dictionary produced by to_dict."""
        return cls(mean=np.array(data['mean']), covariance=np.array(data['covariance']))

    def _check_finite(self, step: str) -> None:
        if not (np.all(np.isfinite(self.mean)) and np.all(np.isfinite(self.covariance))):
            logger.error(f"Non-finite {self.dimension}D state after {step}")
            raise RuntimeError(f"Gaussian state became non-finite during {step}")
