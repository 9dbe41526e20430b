"""
Tests for contact detection.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest

from kinetics_fusion.contacts import (
    ContactDetector,
    ContactsDetection,
    ContactsManager,
    SchmittTrigger,
    SensorsDetection,
    SolverDetection,
    SurfacesDetection,
    ThresholdDetection,
    resolve_thresholds,
)
from kinetics_fusion.exceptions import ConfigurationError, ContactCapacityError


def wrench(fz: float) -> np.ndarray:
    return np.array([0.0, 0.0, fz, 0.0, 0.0, 0.0])


def names(contacts):
    return [c.name for c in contacts]


class TestSchmittTrigger:
    """Test hysteresis"""

    def test_single_threshold(self):
        trigger = SchmittTrigger(10.0, 10.0)
        states = [trigger.update(s) for s in (5.0, 12.0, 9.0, 11.0)]
        assert states == [False, True, False, True]

    def test_hysteresis_band_keeps_state(self):
        trigger = SchmittTrigger(20.0, 40.0)
        states = [trigger.update(s) for s in (30.0, 45.0, 30.0, 15.0, 30.0)]
        assert states == [False, True, True, False, False]

    def test_inverted_thresholds(self):
        with pytest.raises(ConfigurationError):
            SchmittTrigger(40.0, 20.0)


class TestThresholds:
    """Test threshold resolution"""

    def test_from_proportions(self):
        lower, upper = resolve_thresholds(lower_prop=0.1, upper_prop=0.2, weight=400.0)
        assert lower == pytest.approx(40.0)
        assert upper == pytest.approx(80.0)

    def test_absolute_overrides_proportion(self):
        lower, upper = resolve_thresholds(lower=5.0, lower_prop=0.1, upper_prop=0.2, weight=400.0)
        assert (lower, upper) == (5.0, pytest.approx(80.0))

    def test_missing_threshold(self):
        with pytest.raises(ConfigurationError):
            resolve_thresholds(lower=5.0)

    def test_policy_names(self):
        assert ContactsDetection.from_string('sensors') is ContactsDetection.SENSORS
        with pytest.raises(ConfigurationError):
            ContactsDetection.from_string('Magic')


class TestSurfacesDetection:
    """Test surfaces policy"""

    @pytest.fixture
    def detector(self):
        policy = SurfacesDetection(
            surfaces={'LeftFoot': 'LeftSensor', 'RightFoot': 'RightSensor'},
            lower_threshold=20.0,
            upper_threshold=40.0,
        )
        return ContactDetector(policy, ContactsManager(max_contacts=3))

    def test_lifecycle(self, detector):
        update = detector.classify({'LeftSensor': wrench(100.0), 'RightSensor': wrench(0.0)})
        assert names(update.new) == ['LeftFoot']
        assert update.new[0].is_set
        assert update.new[0].sensor_name == 'LeftSensor'

        update = detector.classify({'LeftSensor': wrench(30.0), 'RightSensor': wrench(0.0)})
        assert names(update.maintained) == ['LeftFoot']
        assert update.maintained[0].was_already_set
        assert not update.new and not update.removed

        update = detector.classify({'LeftSensor': wrench(10.0), 'RightSensor': wrench(0.0)})
        assert names(update.removed) == ['LeftFoot']
        assert 'LeftFoot' not in detector.registry

    def test_surface_predicate_blocks_contact(self, detector):
        update = detector.classify(
            {'LeftSensor': wrench(100.0), 'RightSensor': wrench(100.0)},
            surface_contacts={'LeftFoot': False},
        )
        assert names(update.new) == ['RightFoot']

    def test_detection_signal_overrides_force(self, detector):
        update = detector.classify(
            {'LeftSensor': wrench(0.0), 'RightSensor': wrench(0.0)},
            detection_signals={'LeftFoot': 50.0},
        )
        assert names(update.new) == ['LeftFoot']

    def test_missing_sensor_reads_zero(self, detector):
        update = detector.classify({})
        assert not update

    def test_callbacks_called_once(self):
        calls = []
        policy = SurfacesDetection({'Foot': 'Sensor'}, 20.0, 40.0)
        detector = ContactDetector(
            policy, ContactsManager(),
            on_new=lambda c: calls.append(('new', c.name, c.is_set)),
            on_maintained=lambda c: calls.append(('maintained', c.name, c.is_set)),
            on_removed=lambda c: calls.append(('removed', c.name, c.is_set)),
            on_added=lambda c: calls.append(('added', c.name, c.is_set)),
        )

        for fz in (50.0, 50.0, 0.0):
            detector.classify({'Sensor': wrench(fz)})

        assert calls == [
            ('added', 'Foot', False),
            ('new', 'Foot', False),
            ('maintained', 'Foot', True),
            ('removed', 'Foot', True),
        ]

    def test_capacity_exceeded(self):
        policy = SurfacesDetection({'A': 'SA', 'B': 'SB'}, 20.0, 40.0)
        detector = ContactDetector(policy, ContactsManager(max_contacts=1))
        with pytest.raises(ContactCapacityError):
            detector.classify({'SA': wrench(50.0), 'SB': wrench(50.0)})


class TestSensorsDetection:
    """Test sensors and threshold policies"""

    def test_input_sensors_are_not_contacts(self):
        policy = SensorsDetection(
            force_sensors=['FootSensor', 'HandSensor'],
            lower_threshold=20.0,
            upper_threshold=40.0,
            force_sensors_as_input=['HandSensor'],
        )
        detector = ContactDetector(policy, ContactsManager())

        update = detector.classify({'FootSensor': wrench(50.0), 'HandSensor': wrench(50.0)})

        assert names(update.new) == ['FootSensor']
        assert detector.input_sensors == ['HandSensor']
        assert update.new[0].surface_name is None

    def test_threshold_policy(self):
        policy = ThresholdDetection(force_sensors=['Sensor'], threshold=10.0)
        detector = ContactDetector(policy, ContactsManager())

        in_contact = []
        for fz in (5.0, 12.0, 9.0, 11.0):
            detector.classify({'Sensor': wrench(fz)})
            in_contact.append('Sensor' in detector.registry)

        assert in_contact == [False, True, False, True]


class TestSolverDetection:
    """Test externally driven contacts"""

    @pytest.fixture
    def detector(self):
        return ContactDetector(SolverDetection(surfaces={'A': 'SensorA'}), ContactsManager(max_contacts=3))

    def test_add_and_remove(self, detector):
        detector.solver_add_contact('A')
        update = detector.classify({})
        assert names(update.new) == ['A']
        assert update.new[0].sensor_name == 'SensorA'

        update = detector.classify({})
        assert names(update.maintained) == ['A']

        detector.solver_remove_contact('A')
        update = detector.classify({})
        assert names(update.removed) == ['A']

    def test_unlisted_contact_is_unsensed_surface(self, detector):
        detector.solver_add_contact('Hand')
        update = detector.classify({})
        contact = update.new[0]
        assert contact.sensor_name is None
        assert contact.surface_name == 'Hand'

    def test_add_then_remove_same_tick(self, detector):
        detector.solver_add_contact('A')
        detector.solver_remove_contact('A')
        assert not detector.classify({})

    def test_removed_id_reused_same_tick(self, detector):
        detector.solver_add_contact('A')
        detector.solver_add_contact('B')
        update = detector.classify({})
        assert [c.id for c in update.new] == [0, 1]

        detector.solver_remove_contact('A')
        detector.solver_add_contact('C')
        update = detector.classify({})

        assert names(update.removed) == ['A']
        assert names(update.maintained) == ['B']
        assert names(update.new) == ['C']
        assert update.new[0].id == 0
        assert detector.registry.get('B').id == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
