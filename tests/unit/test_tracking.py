"""
Unit tests for tracking modules.

Tests cover:
- Gaussian state predict/update
- Moving and resting motion models
- Ball hypotheses
- Data association (noise model and distance gate)
"""

import json

import pytest
import numpy as np

from ball_tracking.tracking.kalman_filters import GaussianState, symmetrize
from ball_tracking.tracking.motion_models import MovingModel, RestingModel
from ball_tracking.tracking.hypothesis import BallHypothesis, MEASUREMENT_REWARD
from ball_tracking.tracking.data_association import (
    BallDetection,
    MeasurementBatch,
    DistanceGate,
    detection_noise,
)
from ball_tracking.utils.transforms import Isometry2


def _hypothesis_at(position, time=0.0):
    return BallHypothesis.spawn(time, np.array(position), np.eye(4) * 0.5, np.eye(2) * 0.5)


class TestGaussianState:
    """Test GaussianState predict/update."""

    def test_creation_converts_to_float_arrays(self):
        """Test creating a GaussianState from lists."""
        state = GaussianState([1, 2], [[1, 0], [0, 1]])

        assert state.dimension == 2
        assert state.mean.dtype == float
        assert np.allclose(state.covariance, np.eye(2))

    def test_shape_mismatch_rejected(self):
        """Test that covariance must match the mean dimension."""
        with pytest.raises(ValueError):
            GaussianState(np.zeros(4), np.eye(2))

    def test_prediction_only(self):
        """Test predict with identity model and zero process noise."""
        state = GaussianState(np.array([1.0, -2.0]), np.diag([0.3, 0.7]))

        state.predict(np.eye(2), np.eye(2), np.zeros(2), np.zeros((2, 2)))

        assert np.allclose(state.mean, [1.0, -2.0])
        assert np.allclose(state.covariance, np.diag([0.3, 0.7]))

    def test_predict_adds_control_and_noise(self):
        """Test x = F x + B u and P = F P F^T + Q."""
        state = GaussianState(np.array([1.0, 0.0]), np.eye(2))
        F = np.array([[1.0, 1.0], [0.0, 1.0]])

        state.predict(F, np.eye(2), np.array([0.5, 0.0]), np.eye(2) * 0.1)

        assert np.allclose(state.mean, [1.5, 0.0])
        assert np.allclose(state.covariance, F @ F.T + np.eye(2) * 0.1)

    def test_update_convergence(self):
        """Test repeated updates shrink the covariance and approach the measurement."""
        state = GaussianState(np.zeros(2), np.eye(2))
        measurement = np.array([1.0, 1.0])

        previous_trace = np.trace(state.covariance)
        for _ in range(50):
            state.update(np.eye(2), measurement, np.eye(2) * 0.1)
            trace = np.trace(state.covariance)
            assert trace < previous_trace
            previous_trace = trace

        assert np.allclose(state.mean, measurement, atol=0.01)

    def test_update_keeps_covariance_symmetric(self):
        """Test covariance symmetry after an update with correlated noise."""
        state = GaussianState(np.zeros(4), np.array([
            [0.5, 0.1, 0.02, 0.0],
            [0.1, 0.4, 0.0, 0.03],
            [0.02, 0.0, 0.9, 0.1],
            [0.0, 0.03, 0.1, 0.8],
        ]))
        H = np.hstack([np.eye(2), np.zeros((2, 2))])

        state.update(H, np.array([0.3, -0.2]), np.array([[0.02, 0.005], [0.005, 0.03]]))

        assert np.array_equal(state.covariance, state.covariance.T)
        assert np.all(np.linalg.eigvalsh(state.covariance) > 0)

    def test_update_matches_textbook_gain(self):
        """Test the update against K = P H^T S^-1."""
        P = np.array([[0.5, 0.1], [0.1, 0.3]])
        R = np.eye(2) * 0.2
        z = np.array([1.0, 2.0])
        state = GaussianState(np.zeros(2), P)

        state.update(np.eye(2), z, R)

        K = P @ np.linalg.inv(P + R)
        np.testing.assert_allclose(state.mean, K @ z)
        np.testing.assert_allclose(state.covariance, (np.eye(2) - K) @ P, atol=1e-12)

    def test_singular_innovation_covariance(self):
        """Test that a singular innovation covariance is fatal."""
        state = GaussianState(np.zeros(2), np.zeros((2, 2)))

        with pytest.raises(np.linalg.LinAlgError):
            state.update(np.eye(2), np.array([1.0, 0.0]), np.zeros((2, 2)))

    def test_non_finite_state_rejected(self):
        """Test that a NaN measurement cannot silently corrupt the state."""
        state = GaussianState(np.zeros(2), np.eye(2))

        with pytest.raises(RuntimeError):
            state.update(np.eye(2), np.array([np.nan, 0.0]), np.eye(2))

    def test_serialization_roundtrip(self):
        """Test to_dict/from_dict through JSON is exact."""
        state = GaussianState(np.array([0.1, 1 / 3, -2.5, 7e-9]), np.diag([0.1, 0.2, 1 / 7, 0.4]))

        restored = GaussianState.from_dict(json.loads(json.dumps(state.to_dict())))

        assert np.array_equal(restored.mean, state.mean)
        assert np.array_equal(restored.covariance, state.covariance)

    def test_symmetrize(self):
        """Test symmetrize averages with the transpose."""
        matrix = np.array([[1.0, 2.0], [0.0, 1.0]])
        assert np.allclose(symmetrize(matrix), [[1.0, 1.0], [1.0, 1.0]])


class TestMovingModel:
    """Test constant-velocity ball model."""

    def test_requires_4d_state(self):
        """Test dimension check."""
        with pytest.raises(ValueError):
            MovingModel(GaussianState(np.zeros(2), np.eye(2)))

    def test_from_position_has_zero_velocity(self):
        """Test creating a model at a position."""
        model = MovingModel.from_position(np.array([1.0, 2.0]), np.eye(4))

        assert np.allclose(model.position, [1.0, 2.0])
        assert np.allclose(model.velocity, [0.0, 0.0])
        assert model.speed == 0.0

    def test_constant_velocity_with_decay(self):
        """Test prediction-only motion with identity odometry."""
        model = MovingModel(GaussianState(np.array([0.0, 0.0, 1.0, 0.0]), np.eye(4)))

        model.predict(0.1, Isometry2.identity(), 0.9, np.zeros((4, 4)))

        assert np.allclose(model.position, [0.1, 0.0])
        assert np.allclose(model.velocity, [0.9, 0.0])

    def test_odometry_rotates_position_and_velocity(self):
        """Test re-anchoring into the current frame."""
        model = MovingModel(GaussianState(np.array([1.0, 0.0, 1.0, 0.0]), np.eye(4)))
        odometry = Isometry2(angle=np.pi / 2, translation=np.array([0.5, 0.0]))

        model.predict(0.0, odometry, 1.0, np.zeros((4, 4)))

        assert np.allclose(model.position, [0.5, 1.0])
        assert np.allclose(model.velocity, [0.0, 1.0])

    def test_rotation_preserves_covariance_trace(self):
        """Test that a pure rotation only re-orients the uncertainty."""
        covariance = np.diag([0.1, 0.5, 0.2, 0.9])
        model = MovingModel(GaussianState(np.zeros(4), covariance))

        model.predict(0.0, Isometry2(angle=0.7), 1.0, np.zeros((4, 4)))

        assert np.trace(model.state.covariance) == pytest.approx(np.trace(covariance))

    def test_update_observes_position(self):
        """Test position measurement pulls the position."""
        model = MovingModel.from_position(np.zeros(2), np.eye(4))

        model.update(np.array([1.0, 0.0]), np.eye(2) * 1e-6)

        assert np.allclose(model.position, [1.0, 0.0], atol=1e-5)

    def test_merge_order_independent(self):
        """Test fusing two models gives the same result in either order."""
        a = MovingModel(GaussianState(np.array([0.0, 0.0, 0.5, 0.0]), np.diag([1.0, 2.0, 0.5, 0.5])))
        b = MovingModel(GaussianState(np.array([1.0, 1.0, 0.0, 0.2]), np.diag([0.5, 0.5, 1.0, 0.3])))

        ab = a.copy()
        ab.merge(b)
        ba = b.copy()
        ba.merge(a)

        assert np.allclose(ab.state.mean, ba.state.mean)
        assert np.allclose(ab.state.covariance, ba.state.covariance)


class TestRestingModel:
    """Test constant-position ball model."""

    def test_requires_2d_state(self):
        """Test dimension check."""
        with pytest.raises(ValueError):
            RestingModel(GaussianState(np.zeros(4), np.eye(4)))

    def test_predict_applies_odometry(self):
        """Test prediction moves the ball with the robot's motion."""
        model = RestingModel.from_position(np.array([1.0, 0.0]), np.eye(2))

        model.predict(Isometry2(angle=0.0, translation=np.array([0.2, -0.1])), np.zeros((2, 2)))

        assert np.allclose(model.position, [1.2, -0.1])

    def test_predict_adds_process_noise(self):
        """Test covariance growth."""
        model = RestingModel.from_position(np.zeros(2), np.eye(2))

        model.predict(Isometry2.identity(), np.eye(2) * 0.01)

        assert np.allclose(model.state.covariance, np.eye(2) * 1.01)

    def test_reset_keeps_covariance(self):
        """Test reset overwrites only the mean."""
        model = RestingModel.from_position(np.zeros(2), np.diag([0.3, 0.4]))

        model.reset(np.array([2.0, 3.0]))

        assert np.allclose(model.position, [2.0, 3.0])
        assert np.allclose(model.state.covariance, np.diag([0.3, 0.4]))

    def test_merge_order_independent(self):
        """Test fusing two models gives the same result in either order."""
        a = RestingModel(GaussianState(np.array([0.0, 0.0]), np.diag([1.0, 2.0])))
        b = RestingModel(GaussianState(np.array([1.0, 1.0]), np.diag([0.5, 0.5])))

        ab = a.copy()
        ab.merge(b)
        ba = b.copy()
        ba.merge(a)

        assert np.allclose(ab.position, ba.position)
        assert np.allclose(ab.state.covariance, ba.state.covariance)
        # Information-weighted mean
        assert np.allclose(ab.position, [2.0 / 3.0, 0.8])


class TestBallHypothesis:
    """Test ball hypothesis."""

    def test_spawn(self):
        """Test spawning at a detection."""
        hypothesis = _hypothesis_at([1.0, 2.0], time=0.5)

        assert hypothesis.validity == 1.0
        assert hypothesis.last_update == 0.5
        assert np.allclose(hypothesis.moving.position, [1.0, 2.0])
        assert np.allclose(hypothesis.resting.position, [1.0, 2.0])
        assert np.allclose(hypothesis.moving.velocity, [0.0, 0.0])

    @pytest.mark.parametrize("offset, resting", [(-1e-6, True), (1e-6, False)])
    def test_selection_threshold(self, offset, resting):
        """Test model selection just below and just above the threshold."""
        threshold = 0.05
        hypothesis = _hypothesis_at([1.0, 0.0])
        hypothesis.moving.state.mean[2:] = [threshold + offset, 0.0]
        hypothesis.resting.reset(np.array([1.5, 0.0]))

        selected = hypothesis.selected_position(threshold)

        assert hypothesis.is_resting(threshold) == resting
        if resting:
            assert np.allclose(selected.position, [1.5, 0.0])
            assert np.allclose(selected.velocity, [0.0, 0.0])
        else:
            assert np.allclose(selected.position, [1.0, 0.0])
            assert selected.velocity[0] == pytest.approx(threshold + offset)

    def test_slow_ball_resting_follows_moving(self):
        """Test the resting model snaps to the moving position while slow."""
        hypothesis = _hypothesis_at([1.0, 0.0])
        hypothesis.moving.state.mean[:2] = [2.0, 0.0]

        hypothesis.predict(0.012, Isometry2.identity(), 1.0, np.zeros((4, 4)), np.zeros((2, 2)), 0.05)

        assert np.allclose(hypothesis.resting.position, [2.0, 0.0])

    def test_fast_ball_resting_stays(self):
        """Test the resting model is left alone while the ball rolls."""
        hypothesis = _hypothesis_at([1.0, 0.0])
        hypothesis.moving.state.mean[2:] = [1.0, 0.0]

        hypothesis.predict(0.1, Isometry2.identity(), 1.0, np.zeros((4, 4)), np.zeros((2, 2)), 0.05)

        assert np.allclose(hypothesis.moving.position, [1.1, 0.0])
        assert np.allclose(hypothesis.resting.position, [1.0, 0.0])

    def test_update_rewards_validity(self):
        """Test update increments validity and sets last_update."""
        hypothesis = _hypothesis_at([1.0, 0.0])

        hypothesis.update(0.3, np.array([1.1, 0.0]), np.eye(2) * 0.01)

        assert hypothesis.validity == pytest.approx(1.0 + MEASUREMENT_REWARD)
        assert hypothesis.last_update == 0.3
        assert hypothesis.moving.position[0] > 1.0
        assert hypothesis.resting.position[0] > 1.0

    def test_update_older_than_last_update_rejected(self):
        """Test detections may not go back in time."""
        hypothesis = _hypothesis_at([1.0, 0.0], time=1.0)

        with pytest.raises(ValueError):
            hypothesis.update(0.9, np.array([1.0, 0.0]), np.eye(2) * 0.01)

    def test_update_at_same_time_allowed(self):
        """Test several detections with one timestamp."""
        hypothesis = _hypothesis_at([1.0, 0.0], time=1.0)

        hypothesis.update(1.0, np.array([1.0, 0.0]), np.eye(2) * 0.01)

        assert hypothesis.validity == pytest.approx(2.0)

    def test_decay(self):
        """Test multiplicative validity decay."""
        hypothesis = _hypothesis_at([1.0, 0.0])
        hypothesis.validity = 4.0

        hypothesis.decay(0.5)

        assert hypothesis.validity == pytest.approx(2.0)

    def test_decay_nan_is_fatal(self):
        """Test NaN validity raises."""
        hypothesis = _hypothesis_at([1.0, 0.0])

        with pytest.raises(RuntimeError):
            hypothesis.decay(float("nan"))

    def test_merge_keeps_validity_and_time(self):
        """Test merge retains the receiving hypothesis' bookkeeping."""
        first = _hypothesis_at([1.0, 0.0], time=0.2)
        first.validity = 3.0
        second = _hypothesis_at([1.2, 0.0], time=0.4)
        second.validity = 7.0

        first.merge(second)

        assert first.validity == 3.0
        assert first.last_update == 0.2
        assert np.allclose(first.resting.position, [1.1, 0.0])
        assert np.allclose(first.moving.position, [1.1, 0.0])

    def test_copy_is_independent(self):
        """Test copies do not share state."""
        hypothesis = _hypothesis_at([1.0, 0.0])
        duplicate = hypothesis.copy()

        duplicate.moving.state.mean[0] = 5.0
        duplicate.validity = 9.0

        assert hypothesis.moving.position[0] == 1.0
        assert hypothesis.validity == 1.0

    def test_serialization_roundtrip(self):
        """Test to_dict/from_dict through JSON."""
        hypothesis = _hypothesis_at([1.0, 2.0], time=0.25)
        hypothesis.update(0.5, np.array([1.1, 2.1]), np.eye(2) * 0.03)
        hypothesis.decay(0.97)

        restored = BallHypothesis.from_dict(json.loads(json.dumps(hypothesis.to_dict())))

        assert restored.validity == hypothesis.validity
        assert restored.last_update == hypothesis.last_update
        assert np.array_equal(restored.moving.state.mean, hypothesis.moving.state.mean)
        assert np.array_equal(restored.moving.state.covariance, hypothesis.moving.state.covariance)
        assert np.array_equal(restored.resting.state.mean, hypothesis.resting.state.mean)
        assert np.array_equal(restored.resting.state.covariance, hypothesis.resting.state.covariance)


class TestDataAssociation:
    """Test detections, noise model and gating."""

    def test_batch_wraps_raw_positions(self):
        """Test MeasurementBatch accepts plain positions."""
        batch = MeasurementBatch(timestamp=1.0, detections=[[1.0, 2.0], BallDetection([3.0, 4.0], camera="top")])

        assert all(isinstance(detection, BallDetection) for detection in batch.detections)
        assert np.allclose(batch.detections[0].position, [1.0, 2.0])
        assert batch.detections[1].camera == "top"

    def test_detection_noise_scaled_by_distance(self):
        """Test noise grows with squared distance."""
        base = np.eye(2) * 0.01

        noise = detection_noise(np.array([3.0, 4.0]), base)

        assert np.allclose(noise, np.eye(2) * 0.25)

    def test_detection_noise_unscaled(self):
        """Test the base noise is used as is when scaling is off."""
        base = np.eye(2) * 0.01

        noise = detection_noise(np.array([3.0, 4.0]), base, distance_scaled=False)

        assert np.allclose(noise, base)

    def test_gate_is_strict(self):
        """Test a detection exactly at the matching distance does not match."""
        gate = DistanceGate(matching_distance=1.0)
        hypothesis = _hypothesis_at([0.0, 0.0])

        assert not gate.matches(hypothesis, np.array([1.0, 0.0]))
        assert gate.matches(hypothesis, np.array([0.99, 0.0]))

    @pytest.mark.parametrize("policy, expected", [("both", True), ("moving", False), ("resting", True)])
    def test_gating_policy(self, policy, expected):
        """Test which sub-model positions each policy tests."""
        gate = DistanceGate(matching_distance=0.5, policy=policy)
        hypothesis = _hypothesis_at([0.0, 0.0])
        hypothesis.resting.reset(np.array([2.0, 0.0]))

        assert gate.matches(hypothesis, np.array([2.1, 0.0])) == expected

    def test_unknown_policy(self):
        """Test invalid gating policy."""
        with pytest.raises(ValueError):
            DistanceGate(matching_distance=1.0, policy="nearest")

    def test_find_matching_returns_all(self):
        """Test ambiguous detections match several hypotheses."""
        gate = DistanceGate(matching_distance=1.0)
        hypotheses = [_hypothesis_at([0.0, 0.0]), _hypothesis_at([1.0, 0.0]), _hypothesis_at([5.0, 0.0])]

        matching = gate.find_matching(hypotheses, np.array([0.5, 0.0]))

        assert matching == hypotheses[:2]
