"""
Tests for the contact-aided EKF and the estimator contract.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose

from conftest import GRAVITY, FakeKineticsEstimator, foot_kinematics
from kinetics_fusion.contacts import ContactCovariances, ContactStiffness
from kinetics_fusion.estimation import ContactEKF, EstimatorConfig, PrimaryEstimatorAdapter
from kinetics_fusion.exceptions import EstimatorContractError
from kinetics_fusion.utils.kinematics import Kinematics, KinematicsFlags

FEET_Y = (0.1, -0.1)


def add_feet(ekf, rest_height=0.0, init_covariance=None):
    stiffness = ContactStiffness()
    covariances = ContactCovariances()
    if init_covariance is None:
        init_covariance = np.diag(covariances.init_first)
    for contact_id, y in enumerate(FEET_Y):
        rest = Kinematics.zero(KinematicsFlags.POSE)
        rest.position = np.array([0.0, y, rest_height])
        ekf.add_contact(
            contact_id, rest, init_covariance, np.diag(covariances.process),
            stiffness.lin_stiffness, stiffness.lin_damping,
            stiffness.ang_stiffness, stiffness.ang_damping)


def step(ekf, wrench=None):
    ekf.set_imu(np.array([0.0, 0.0, GRAVITY]), np.zeros(3), np.eye(3) * 1e-4,
                np.eye(3) * 1e-6, Kinematics.zero(KinematicsFlags.POSE))
    for contact_id, y in enumerate(FEET_Y):
        if wrench is None:
            ekf.update_contact_without_sensor(contact_id, foot_kinematics(y))
        else:
            ekf.update_contact_with_sensor(contact_id, wrench, np.eye(6), foot_kinematics(y))
    return ekf.update()


class TestContactEKF:
    """Test the reference primary estimator"""

    def test_initialization(self):
        ekf = ContactEKF(EstimatorConfig(initial_position=np.array([0.0, 0.0, 0.8])))
        assert ekf.x.shape == (13,)
        assert ekf.P.shape == (12, 12)
        assert_allclose(ekf.position, [0.0, 0.0, 0.8])
        assert_allclose(ekf.rotation, np.eye(3))
        assert not ekf.fault_detected

    def test_standing_still(self):
        ekf = ContactEKF(EstimatorConfig(initial_position=np.array([0.0, 0.0, 0.8])))
        add_feet(ekf)

        for _ in range(400):
            step(ekf)

        assert_allclose(ekf.position, [0.0, 0.0, 0.8], atol=1e-6)
        assert_allclose(ekf.velocity, np.zeros(3), atol=1e-6)
        assert not ekf.fault_detected

    def test_force_deflection(self):
        ekf = ContactEKF(EstimatorConfig(initial_position=np.array([0.0, 0.0, 0.8])))
        force = 40.0 * GRAVITY / 2
        # Rest poses above the feet by the elastic deflection
        add_feet(ekf, rest_height=force / ContactStiffness().lin_stiffness[2])
        wrench = np.array([0.0, 0.0, force, 0.0, 0.0, 0.0])

        for _ in range(100):
            step(ekf, wrench)

        assert_allclose(ekf.position, [0.0, 0.0, 0.8], atol=1e-6)

    def test_contacts_correct_position(self):
        config = EstimatorConfig(
            initial_position=np.array([0.0, 0.0, 0.81]),
            position_init_variance=1e-4,
        )
        ekf = ContactEKF(config)
        add_feet(ekf, init_covariance=np.zeros((12, 12)))

        for _ in range(200):
            step(ekf)

        assert ekf.position[2] == pytest.approx(0.8, abs=1e-3)

    def test_finite_differences_match_analytic_jacobian(self):
        states = []
        for with_finite_differences in (False, True):
            config = EstimatorConfig(
                initial_position=np.array([0.01, 0.0, 0.8]),
                position_init_variance=1e-4,
                with_finite_differences=with_finite_differences,
            )
            ekf = ContactEKF(config)
            add_feet(ekf)
            states.append(step(ekf))

        assert_allclose(states[0], states[1], atol=1e-6)

    def test_unmodeled_wrench_drives_prediction(self):
        states = []
        for with_unmodeled_wrench in (False, True):
            config = EstimatorConfig(
                initial_position=np.array([0.0, 0.0, 0.8]),
                with_unmodeled_wrench=with_unmodeled_wrench,
            )
            ekf = ContactEKF(config)
            add_feet(ekf)
            for _ in range(50):
                ekf.set_additional_wrench(np.array([0.0, 0.0, 50.0]), np.zeros(3))
                state = step(ekf)
            states.append(state)

        assert not np.allclose(states[0], states[1])
        # Without the flag the additional wrench is already in the accelerometer
        assert_allclose(states[0][0:3], [0.0, 0.0, 0.8], atol=1e-6)

    def test_unmodeled_force_converges(self):
        config = EstimatorConfig(
            initial_position=np.array([0.0, 0.0, 0.8]),
            mass=40.0,
            gravity=GRAVITY,
            with_unmodeled_wrench=True,
        )
        ekf = ContactEKF(config)
        force = 40.0 * GRAVITY / 2
        add_feet(ekf, rest_height=force / ContactStiffness().lin_stiffness[2])
        wrench = np.array([0.0, 0.0, force, 0.0, 0.0, 0.0])

        # The accelerometer sees a robot at rest, the pushed force is not there
        for _ in range(200):
            ekf.set_additional_wrench(np.array([0.0, 0.0, 50.0]), np.zeros(3))
            step(ekf, wrench)

        assert ekf.unmodeled_wrench[2] == pytest.approx(-50.0, abs=1.0)
        assert ekf.position[2] == pytest.approx(0.8, abs=1e-3)

    def test_non_finite_state_raises_fault(self):
        ekf = ContactEKF()
        ekf.x[0] = np.nan
        ekf.update()
        assert ekf.fault_detected

        ekf.clear_fault()
        assert not ekf.fault_detected

    def test_inject_fault(self):
        ekf = ContactEKF()
        ekf.inject_fault()
        assert ekf.fault_detected

    def test_set_world_centroid_kinematics(self):
        ekf = ContactEKF()
        ekf.set_center_of_mass(np.array([0.0, 0.0, 0.05]), np.zeros(3), np.zeros(3))
        ekf.P[:] = 1.0
        centroid = Kinematics.zero(KinematicsFlags.POSE | KinematicsFlags.VEL)
        centroid.position = np.array([1.0, 2.0, 0.85])

        ekf.set_world_centroid_kinematics(centroid, reset_covariance=True)

        assert_allclose(ekf.position, [1.0, 2.0, 0.8])
        assert ekf.P[0, 0] == pytest.approx(ekf.config.position_init_variance)
        assert ekf.P[0, 1] == 0.0

    def test_gyro_bias_of_secondary_imu_is_not_estimated(self):
        ekf = ContactEKF()
        ekf.set_gyro_bias(np.ones(3), index=1)
        assert_allclose(ekf.gyro_bias, np.zeros(3))
        ekf.set_gyro_bias(np.full(3, 0.01))
        assert_allclose(ekf.gyro_bias, np.full(3, 0.01))

    def test_global_kinematics(self):
        ekf = ContactEKF(EstimatorConfig(initial_position=np.array([0.0, 0.0, 0.8])))
        world = ekf.get_global_kinematics_of(foot_kinematics(0.1))
        assert_allclose(world.position, [0.0, 0.1, 0.0])

    def test_contact_estimate(self):
        ekf = ContactEKF()
        add_feet(ekf)
        assert ekf.number_of_set_contacts == 2

        estimate = ekf.get_contact_estimate(1)

        assert_allclose(estimate.position, [0.0, -0.1, 0.0])
        assert_allclose(estimate.position_covariance, ContactCovariances().init_first[0:3])

        ekf.remove_contact(1)
        assert ekf.number_of_set_contacts == 1


class TestPrimaryEstimatorAdapter:
    """Test the call contract"""

    @pytest.fixture
    def adapter(self):
        adapter = PrimaryEstimatorAdapter(FakeKineticsEstimator(), max_contacts=2)
        adapter.add_contact(0, Kinematics.zero(KinematicsFlags.POSE), np.eye(12), np.eye(12),
                            np.ones(3), np.ones(3), np.ones(3), np.ones(3))
        return adapter

    def test_add_twice(self, adapter):
        with pytest.raises(EstimatorContractError):
            adapter.add_contact(0, Kinematics.zero(KinematicsFlags.POSE), np.eye(12), np.eye(12),
                                np.ones(3), np.ones(3), np.ones(3), np.ones(3))

    def test_id_out_of_range(self, adapter):
        with pytest.raises(EstimatorContractError):
            adapter.add_contact(2, Kinematics.zero(KinematicsFlags.POSE), np.eye(12), np.eye(12),
                                np.ones(3), np.ones(3), np.ones(3), np.ones(3))

    def test_update_twice(self, adapter):
        adapter.update_contact(0, foot_kinematics(0.1))
        with pytest.raises(EstimatorContractError):
            adapter.update_contact(0, foot_kinematics(0.1))

    def test_missing_update(self, adapter):
        with pytest.raises(EstimatorContractError):
            adapter.update()

    def test_unknown_id(self, adapter):
        with pytest.raises(EstimatorContractError):
            adapter.update_contact(1, foot_kinematics(0.1))
        with pytest.raises(EstimatorContractError):
            adapter.remove_contact(1)

    def test_dispatch_on_sensor_use(self, adapter):
        adapter.update_contact(0, foot_kinematics(0.1), wrench=np.ones(6), sensor_covariance=np.eye(6))
        adapter.update()
        adapter.update_contact(0, foot_kinematics(0.1))
        adapter.update()

        assert len(adapter.estimator.calls_named('update_contact_with_sensor')) == 1
        assert len(adapter.estimator.calls_named('update_contact_without_sensor')) == 1

    def test_delegates_other_calls(self, adapter):
        adapter.estimator.fault = True
        assert adapter.fault_detected
        adapter.clear_fault()
        assert not adapter.fault_detected


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
