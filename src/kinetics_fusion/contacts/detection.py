#!/usr/bin/env python3
"""
Contact Detection
Classifies contacts into new / maintained / removed at each tick from
force measurements, surface predicates or external solver events

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from .contact import Contact
from .contacts_manager import ContactsManager
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ContactCallback = Callable[[Contact], None]


class ContactsDetection(Enum):
    """Contact detection policies"""
    SURFACES = "Surfaces"
    SENSORS = "Sensors"
    THRESHOLD = "Threshold"
    SOLVER = "Solver"

    @classmethod
    def from_string(cls, name: str) -> 'ContactsDetection':
        for policy in cls:
            if policy.value.lower() == str(name).lower():
                return policy
        raise ConfigurationError(
            f"Unknown contacts detection method '{name}', "
            f"expected one of {[p.value for p in cls]}")


class SchmittTrigger:
    """
    Two-threshold hysteresis on a scalar signal

    Switches ON when the signal rises above the upper threshold and OFF
    when it falls below the lower one. In between, the state is kept.
    """

    def __init__(self, lower: float, upper: float, state: bool = False):
        if lower > upper:
            raise ConfigurationError(
                f"Schmitt trigger lower threshold ({lower}) is above the upper one ({upper})")
        self.lower = lower
        self.upper = upper
        self.state = state

    def update(self, signal: float) -> bool:
        if signal > self.upper:
            self.state = True
        elif signal < self.lower:
            self.state = False
        return self.state

    def reset(self):
        self.state = False


@dataclass
class SurfacesDetection:
    """
    Candidate contact surfaces, each bound to a force sensor

    Attributes:
        surfaces: Surface name -> force sensor name
        lower_threshold: Schmitt trigger lower threshold (N)
        upper_threshold: Schmitt trigger upper threshold (N)
    """
    surfaces: Dict[str, str]
    lower_threshold: float
    upper_threshold: float

    detection = ContactsDetection.SURFACES


@dataclass
class SensorsDetection:
    """
    Every force sensor is a candidate, except those used as wrench inputs

    Attributes:
        force_sensors: Force sensors of the robot
        force_sensors_as_input: Sensors measuring external wrenches, never contacts
        lower_threshold: Schmitt trigger lower threshold (N)
        upper_threshold: Schmitt trigger upper threshold (N)
    """
    force_sensors: List[str]
    lower_threshold: float
    upper_threshold: float
    force_sensors_as_input: List[str] = field(default_factory=list)

    detection = ContactsDetection.SENSORS


@dataclass
class ThresholdDetection:
    """A sensor is in contact while its force norm exceeds the threshold"""
    force_sensors: List[str]
    threshold: float

    detection = ContactsDetection.THRESHOLD


@dataclass
class SolverDetection:
    """
    Contacts are added and removed by an external solver

    Attributes:
        surfaces: Surface name -> force sensor name, for solver contacts
            that are measured by a sensor
    """
    surfaces: Dict[str, str] = field(default_factory=dict)

    detection = ContactsDetection.SOLVER


DetectionPolicy = Union[SurfacesDetection, SensorsDetection, ThresholdDetection, SolverDetection]


@dataclass
class ContactUpdate:
    """Per-tick classification, the three lists are disjoint"""
    new: List[Contact] = field(default_factory=list)
    maintained: List[Contact] = field(default_factory=list)
    removed: List[Contact] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.new or self.maintained or self.removed)


def resolve_thresholds(
    lower: Optional[float] = None,
    upper: Optional[float] = None,
    lower_prop: Optional[float] = None,
    upper_prop: Optional[float] = None,
    weight: float = 0.0
) -> Tuple[float, float]:
    """
    Absolute Schmitt thresholds from absolute or weight-proportional values

    Args:
        lower, upper: Absolute thresholds (N)
        lower_prop, upper_prop: Thresholds as a proportion of the robot weight
        weight: Robot weight mass * g (N)

    Returns:
        Tuple of (lower, upper) in newtons
    """
    if lower is None:
        if lower_prop is None:
            raise ConfigurationError("No lower contact detection threshold given")
        lower = lower_prop * weight
    if upper is None:
        if upper_prop is None:
            raise ConfigurationError("No upper contact detection threshold given")
        upper = upper_prop * weight
    if lower > upper:
        raise ConfigurationError(
            f"Lower contact detection threshold ({lower} N) is above the upper one ({upper} N)")
    return lower, upper


class ContactDetector:
    """
    Single contact detection interface over all policies

    Each call to `classify` compares the detection result with the contact
    registry, creates the contacts entering contact and returns the
    classification. Callbacks are invoked once per contact and per tick.
    """

    def __init__(
        self,
        policy: DetectionPolicy,
        registry: ContactsManager,
        on_new: Optional[ContactCallback] = None,
        on_maintained: Optional[ContactCallback] = None,
        on_removed: Optional[ContactCallback] = None,
        on_added: Optional[ContactCallback] = None
    ):
        self.policy = policy
        self.registry = registry

        self.on_new = on_new
        self.on_maintained = on_maintained
        self.on_removed = on_removed
        self.on_added = on_added

        # Candidate name -> (sensor, surface)
        self._candidates: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._triggers: Dict[str, SchmittTrigger] = {}

        self._solver_contacts: Set[str] = set()
        self._solver_events: List[Tuple[str, str]] = []

        self._build_candidates()

    @property
    def detection(self) -> ContactsDetection:
        return self.policy.detection

    @property
    def input_sensors(self) -> List[str]:
        """Sensors whose measurements are external wrench inputs"""
        if isinstance(self.policy, SensorsDetection):
            return list(self.policy.force_sensors_as_input)
        return []

    def _build_candidates(self):
        policy = self.policy
        if isinstance(policy, SurfacesDetection):
            for surface, sensor in policy.surfaces.items():
                self._candidates[surface] = (sensor, surface)
                self._triggers[surface] = SchmittTrigger(
                    policy.lower_threshold, policy.upper_threshold)

        elif isinstance(policy, SensorsDetection):
            excluded = set(policy.force_sensors_as_input)
            for sensor in policy.force_sensors:
                if sensor in excluded:
                    continue
                self._candidates[sensor] = (sensor, None)
                self._triggers[sensor] = SchmittTrigger(
                    policy.lower_threshold, policy.upper_threshold)

        elif isinstance(policy, ThresholdDetection):
            for sensor in policy.force_sensors:
                self._candidates[sensor] = (sensor, None)
                self._triggers[sensor] = SchmittTrigger(policy.threshold, policy.threshold)

        elif isinstance(policy, SolverDetection):
            for surface, sensor in policy.surfaces.items():
                self._candidates[surface] = (sensor, surface)

        else:
            raise ConfigurationError(f"Unsupported detection policy {type(policy).__name__}")

    def solver_add_contact(self, name: str):
        """Queue a contact creation from the external solver"""
        self._solver_events.append(('add', name))

    def solver_remove_contact(self, name: str):
        """Queue a contact removal from the external solver"""
        self._solver_events.append(('remove', name))

    def _signal(
        self,
        name: str,
        sensor: Optional[str],
        wrenches: Dict[str, np.ndarray],
        detection_signals: Dict[str, float]
    ) -> float:
        if name in detection_signals:
            return float(detection_signals[name])
        return self._force_norm(sensor, wrenches)

    @staticmethod
    def _force_norm(sensor: Optional[str], wrenches: Dict[str, np.ndarray]) -> float:
        if sensor is None or sensor not in wrenches:
            return 0.0
        return float(np.linalg.norm(np.asarray(wrenches[sensor])[:3]))

    def _detect(
        self,
        wrenches: Dict[str, np.ndarray],
        surface_contacts: Dict[str, bool],
        detection_signals: Dict[str, float]
    ) -> Dict[str, bool]:
        """In-contact status of every candidate"""
        if isinstance(self.policy, SolverDetection):
            for action, name in self._solver_events:
                if action == 'add':
                    self._solver_contacts.add(name)
                else:
                    self._solver_contacts.discard(name)
            self._solver_events.clear()

            names = set(self._solver_contacts) | {c.name for c in self.registry}
            return {name: name in self._solver_contacts for name in sorted(names)}

        detected = {}
        for name, (sensor, surface) in self._candidates.items():
            signal = self._signal(name, sensor, wrenches, detection_signals)
            in_contact = self._triggers[name].update(signal)
            if surface is not None and isinstance(self.policy, SurfacesDetection):
                in_contact = in_contact and bool(surface_contacts.get(surface, True))
            detected[name] = in_contact

        # Contacts no longer among the candidates are released
        for contact in self.registry:
            detected.setdefault(contact.name, False)
        return detected

    def classify(
        self,
        wrenches: Dict[str, np.ndarray],
        surface_contacts: Optional[Dict[str, bool]] = None,
        detection_signals: Optional[Dict[str, float]] = None
    ) -> ContactUpdate:
        """
        Classify contacts for the current tick

        Removed contacts are handled first: `on_removed` is called, then the
        contact is unset and destroyed, releasing its id. Maintained contacts
        follow, then new contacts are created in the freed slots, reported
        with `on_new` and marked as set.

        Args:
            wrenches: Sensor name -> measured wrench [force, torque] in sensor frame
            surface_contacts: Surface name -> external contact predicate
            detection_signals: Contact name -> signal overriding the force norm

        Returns:
            New, maintained and removed contacts

        Raises:
            ContactCapacityError: A new contact does not fit in the registry
        """
        detected = self._detect(wrenches, surface_contacts or {}, detection_signals or {})
        update = ContactUpdate()
        new_names = []

        for name, in_contact in detected.items():
            contact = self.registry.get(name)
            if in_contact:
                if contact is not None and contact.is_set:
                    update.maintained.append(contact)
                else:
                    new_names.append(name)
            elif contact is not None:
                update.removed.append(contact)

        for contact in update.removed:
            contact.force_norm = self._force_norm(contact.sensor_name, wrenches)
            if self.on_removed is not None:
                self.on_removed(contact)
            contact.reset()
            self.registry.remove(contact.name)

        for contact in update.maintained:
            contact.force_norm = self._force_norm(contact.sensor_name, wrenches)
            contact.was_already_set = True
            if self.on_maintained is not None:
                self.on_maintained(contact)

        for name in new_names:
            contact = self.registry.get(name)
            if contact is None:
                # Unlisted solver contacts are unsensed surfaces
                sensor, surface = self._candidates.get(name, (None, name))
                contact = self.registry.create(name, sensor, surface)
                if self.on_added is not None:
                    self.on_added(contact)

            contact.force_norm = self._force_norm(contact.sensor_name, wrenches)
            contact.was_already_set = False
            if self.on_new is not None:
                self.on_new(contact)
            contact.is_set = True
            update.new.append(contact)

        if update.new or update.removed:
            logger.debug(
                "Contacts new=%s maintained=%s removed=%s",
                [c.name for c in update.new],
                [c.name for c in update.maintained],
                [c.name for c in update.removed])

        return update

    def reset(self):
        """Release the hysteresis state and pending solver events"""
        for trigger in self._triggers.values():
            trigger.reset()
        self._solver_contacts.clear()
        self._solver_events.clear()
