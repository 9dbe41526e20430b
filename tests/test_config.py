"""
Tests for configuration loading and validation.
Run with: pytest tests/ -v
"""

from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose

from kinetics_fusion.config import ContactsConfig, FusionConfig, load_config
from kinetics_fusion.contacts import (
    ContactsDetection,
    OdometryType,
    SensorsDetection,
    SolverDetection,
    SurfacesDetection,
    ThresholdDetection,
)
from kinetics_fusion.exceptions import ConfigurationError

REPO_CONFIG = Path(__file__).parent.parent / 'config' / 'kinetics_fusion.yaml'


class TestFusionConfig:
    """Test defaults and derived values"""

    def test_defaults_are_valid(self):
        config = FusionConfig()
        assert config.odometry is OdometryType.ODOMETRY_6D
        assert config.detection is ContactsDetection.SURFACES
        assert config.recovery_ticks == 300
        # History defaults to the recovery window
        assert config.history_capacity == 300

    def test_thresholds_from_weight(self):
        config = FusionConfig(mass=50.0, gravity=10.0)
        policy = config.detection_policy()
        assert isinstance(policy, SurfacesDetection)
        assert policy.lower_threshold == pytest.approx(55.0)
        assert policy.upper_threshold == pytest.approx(85.0)

    def test_estimator_follows_period(self):
        config = FusionConfig(dt=0.002, gravity=9.8, mass=55.0)
        assert config.estimator.dt == 0.002
        assert config.estimator.gravity == 9.8
        assert config.estimator.mass == 55.0

    def test_sensors_policy(self):
        config = FusionConfig(contacts=ContactsConfig(
            detection='Sensors',
            force_sensors=['LeftFootForceSensor', 'LeftHandForceSensor'],
            force_sensors_as_input=['LeftHandForceSensor'],
        ))
        policy = config.detection_policy()
        assert isinstance(policy, SensorsDetection)
        assert policy.force_sensors_as_input == ['LeftHandForceSensor']

    def test_threshold_policy(self):
        config = FusionConfig(contacts=ContactsConfig(
            detection='Threshold', force_sensors=['LeftFootForceSensor'], threshold=30.0))
        policy = config.detection_policy()
        assert isinstance(policy, ThresholdDetection)
        assert policy.threshold == 30.0

    def test_solver_policy(self):
        config = FusionConfig(contacts=ContactsConfig(detection='Solver'))
        assert isinstance(config.detection_policy(), SolverDetection)

    def test_surface_sensor_must_be_declared(self):
        with pytest.raises(ConfigurationError, match='NoSuchSensor'):
            FusionConfig(contacts=ContactsConfig(
                detection='Surfaces',
                surfaces={'LeftFootCenter': 'NoSuchSensor'},
                force_sensors=['LeftFootForceSensor', 'RightFootForceSensor'],
            ))

    def test_known_sensors_are_the_declared_ones(self):
        contacts = ContactsConfig(
            surfaces={'LeftFootCenter': 'LeftFootForceSensor'},
            force_sensors=['LeftFootForceSensor', 'LeftHandForceSensor'],
        )
        assert contacts.known_sensors == ['LeftFootForceSensor', 'LeftHandForceSensor']

    def test_known_sensors_from_surfaces_when_undeclared(self):
        contacts = ContactsConfig(surfaces={'A': 'S1', 'B': 'S2', 'C': 'S1'})
        assert contacts.known_sensors == ['S1', 'S2']

    @pytest.mark.parametrize('kwargs', [
        dict(dt=0.0),
        dict(mass=-1.0),
        dict(max_contacts=0),
        dict(recovery_window=0.0),
        dict(backup_interval=-1.0),
        dict(odometry_type='3D'),
        dict(contacts=ContactsConfig(detection='Vision')),
        dict(contacts=ContactsConfig(sensors_disabled_init=['UnknownSensor'])),
        dict(contacts=ContactsConfig(lower_threshold=50.0, upper_threshold=10.0)),
        dict(contacts=ContactsConfig(detection='Threshold', force_sensors=['S'])),
        dict(contacts=ContactsConfig(detection='Sensors')),
        dict(contacts=ContactsConfig(
            detection='Solver', surfaces={'Hand': 'HandSensor'}, force_sensors=['FootSensor'])),
        dict(contacts=ContactsConfig(
            detection='Sensors', force_sensors=['S1'], force_sensors_as_input=['S2'])),
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            FusionConfig(**kwargs)


class TestLoadConfig:
    """Test YAML loading"""

    def test_load_nested(self, tmp_path):
        path = tmp_path / 'fusion.yaml'
        path.write_text(
            "kinetics_fusion:\n"
            "  dt: 0.01\n"
            "  recovery_window: 0.5\n"
            "  backup_interval: 0.2\n"
            "  odometry_type: Flat\n"
            "  contacts:\n"
            "    detection: Surfaces\n"
            "    surfaces: {LeftSole: LeftSensor}\n"
            "    lower_threshold: 10.0\n"
            "    upper_threshold: 20.0\n"
            "  stiffness:\n"
            "    lin_stiffness: 10000.0\n"
        )

        config = load_config(path)

        assert config.dt == 0.01
        assert config.recovery_ticks == 50
        assert config.history_capacity == 20
        assert config.odometry is OdometryType.FLAT
        assert config.contacts.surfaces == {'LeftSole': 'LeftSensor'}
        assert_allclose(config.stiffness.lin_stiffness, np.full(3, 1e4))

    def test_load_flat_mapping(self, tmp_path):
        path = tmp_path / 'fusion.yaml'
        path.write_text("mass: 60.0\n")
        assert load_config(path).mass == 60.0

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / 'fusion.yaml'
        path.write_text("")
        assert load_config(path).dt == FusionConfig().dt

    def test_unknown_key(self, tmp_path):
        path = tmp_path / 'fusion.yaml'
        path.write_text("contacts:\n  detecton: Surfaces\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_repository_config(self):
        config = load_config(REPO_CONFIG)
        assert config.dt == 0.005
        assert config.recovery_ticks == 300
        assert config.history_capacity == 200
        assert_allclose(config.estimator.initial_position, [0.0, 0.0, 0.8])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
