"""Pytest fixtures for kinetics fusion tests."""

import numpy as np
import pytest

from kinetics_fusion.config import ContactsConfig, FusionConfig
from kinetics_fusion.estimation.kinetics_estimator import ContactEstimate, KineticsEstimator
from kinetics_fusion.estimation.measurements import CenterOfMass, ImuMeasurement, TickInputs
from kinetics_fusion.utils.kinematics import Kinematics, KinematicsFlags

GRAVITY = 9.81

LEFT_SURFACE = 'LeftFootCenter'
RIGHT_SURFACE = 'RightFootCenter'
LEFT_SENSOR = 'LeftFootForceSensor'
RIGHT_SENSOR = 'RightFootForceSensor'


class FakeKineticsEstimator(KineticsEstimator):
    """
    Deterministic stand-in for the primary estimator

    Records every call and returns a fixed floating-base pose. The fault
    flag is set by the tests.
    """

    def __init__(self, base: Kinematics = None):
        self.base = base or Kinematics.zero(KinematicsFlags.ALL)
        self.calls = []
        self.contacts = {}
        self.fault = False
        self.centroid = None

    def calls_named(self, name):
        return [args for call, args in self.calls if call == name]

    def add_contact(self, contact_id, rest_kinematics, init_covariance, process_covariance,
                    lin_stiffness, lin_damping, ang_stiffness, ang_damping):
        self.calls.append(('add_contact', (contact_id, rest_kinematics, init_covariance)))
        self.contacts[contact_id] = {'rest': rest_kinematics, 'wrench': np.zeros(6)}

    def update_contact_with_sensor(self, contact_id, wrench, sensor_covariance, input_kinematics):
        self.calls.append(('update_contact_with_sensor', (contact_id, wrench)))
        self.contacts[contact_id]['wrench'] = np.array(wrench)

    def update_contact_without_sensor(self, contact_id, input_kinematics):
        self.calls.append(('update_contact_without_sensor', (contact_id,)))

    def remove_contact(self, contact_id):
        self.calls.append(('remove_contact', (contact_id,)))
        del self.contacts[contact_id]

    def set_imu(self, accel, gyro, accel_cov, gyro_cov, imu_kinematics, index=0):
        self.calls.append(('set_imu', (index,)))

    def set_center_of_mass(self, position, velocity, acceleration):
        self.calls.append(('set_center_of_mass', (position,)))

    def set_additional_wrench(self, force, torque):
        self.calls.append(('set_additional_wrench', (np.array(force), np.array(torque))))

    def update(self):
        self.calls.append(('update', ()))
        return np.zeros(13)

    @property
    def fault_detected(self):
        return self.fault

    def clear_fault(self):
        self.calls.append(('clear_fault', ()))
        self.fault = False

    def inject_fault(self):
        self.fault = True

    def get_global_kinematics_of(self, local_kinematics):
        return self.base * local_kinematics

    def set_world_centroid_kinematics(self, kinematics, reset_covariance=True):
        self.calls.append(('set_world_centroid_kinematics', (kinematics, reset_covariance)))
        self.centroid = kinematics

    def set_state_contact(self, contact_id, rest_kinematics, wrench, reset_covariance=True):
        self.calls.append(('set_state_contact', (contact_id, rest_kinematics, reset_covariance)))
        self.contacts[contact_id] = {'rest': rest_kinematics, 'wrench': np.array(wrench)}

    def set_gyro_bias(self, bias, index=0, reset_covariance=True):
        self.calls.append(('set_gyro_bias', (np.array(bias), index, reset_covariance)))

    def set_state_unmodeled_wrench(self, wrench, reset_covariance=True):
        self.calls.append(('set_state_unmodeled_wrench', (np.array(wrench), reset_covariance)))

    @property
    def number_of_set_contacts(self):
        return len(self.contacts)

    def get_contact_estimate(self, contact_id):
        contact = self.contacts[contact_id]
        return ContactEstimate(
            position=contact['rest'].position,
            orientation=contact['rest'].orientation,
            force=contact['wrench'][:3],
            torque=contact['wrench'][3:],
        )


def foot_kinematics(y: float, height: float = 0.8) -> Kinematics:
    """Foot frame in the floating base, axes aligned with the base"""
    kine = Kinematics.zero(KinematicsFlags.POSE | KinematicsFlags.VEL)
    kine.position = np.array([0.0, y, -height])
    return kine


def make_inputs(left_force: float = 0.0, right_force: float = 0.0, **kwargs) -> TickInputs:
    """Inputs of a robot standing straight with the given vertical foot forces"""
    feet = {
        LEFT_SURFACE: foot_kinematics(0.1),
        RIGHT_SURFACE: foot_kinematics(-0.1),
    }
    values = dict(
        imus=[ImuMeasurement(accel=np.array([0.0, 0.0, GRAVITY]), gyro=np.zeros(3))],
        com=CenterOfMass(position=np.array([0.0, 0.0, 0.05])),
        wrenches={
            LEFT_SENSOR: np.array([0.0, 0.0, left_force, 0.0, 0.0, 0.0]),
            RIGHT_SENSOR: np.array([0.0, 0.0, right_force, 0.0, 0.0, 0.0]),
        },
        sensor_kinematics={
            LEFT_SENSOR: feet[LEFT_SURFACE],
            RIGHT_SENSOR: feet[RIGHT_SURFACE],
        },
        surface_kinematics=feet,
    )
    values.update(kwargs)
    return TickInputs(**values)


@pytest.fixture
def fake_estimator() -> FakeKineticsEstimator:
    """Fake primary estimator with the base at 0.8 m"""
    base = Kinematics.zero(KinematicsFlags.ALL)
    base.position = np.array([0.0, 0.0, 0.8])
    return FakeKineticsEstimator(base)


@pytest.fixture
def config() -> FusionConfig:
    """Surfaces detection on both feet, absolute thresholds, 10 ticks of recovery"""
    return FusionConfig(
        dt=0.01,
        mass=40.0,
        gravity=GRAVITY,
        odometry_type='6D',
        recovery_window=0.1,
        backup_interval=0.05,
        contacts=ContactsConfig(
            detection='Surfaces',
            surfaces={LEFT_SURFACE: LEFT_SENSOR, RIGHT_SURFACE: RIGHT_SENSOR},
            lower_threshold=20.0,
            upper_threshold=40.0,
        ),
    )


@pytest.fixture
def standing_inputs() -> TickInputs:
    """Weight shared between both feet"""
    half_weight = 40.0 * GRAVITY / 2
    return make_inputs(half_weight, half_weight)
