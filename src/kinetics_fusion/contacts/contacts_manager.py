#!/usr/bin/env python3
"""
Contacts Manager
Registry of the contacts currently known to the estimator, with id
allocation and per-sensor enable state

Author: Kinetics Fusion contributors
"""

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .contact import Contact
from ..exceptions import ConfigurationError, ContactCapacityError

logger = logging.getLogger(__name__)


class ContactsManager:
    """
    Contact registry

    Contacts are created on first detection and destroyed once their
    removal has been reported to the estimator. Each live contact holds an
    id in [0, max_contacts), the lowest free one at creation time, so an id
    released by a removed contact is reused by the next created one.
    """

    def __init__(
        self,
        max_contacts: int = 3,
        known_sensors: Optional[Iterable[str]] = None,
        disabled_sensors: Optional[Iterable[str]] = None
    ):
        """
        Initialize registry

        Args:
            max_contacts: Number of contact slots of the estimator
            known_sensors: Force sensors of the robot, used to validate
                enable / disable requests (no validation if None)
            disabled_sensors: Sensors whose measurements are not used at startup
        """
        if max_contacts < 1:
            raise ConfigurationError(f"max_contacts must be at least 1, got {max_contacts}")

        self.max_contacts = max_contacts
        self.known_sensors = None if known_sensors is None else set(known_sensors)

        self._contacts: Dict[str, Contact] = {}
        self._disabled_sensors: Set[str] = set()

        for sensor in disabled_sensors or []:
            self._check_sensor(sensor)
            self._disabled_sensors.add(sensor)

    def __len__(self) -> int:
        return len(self._contacts)

    def __contains__(self, name: str) -> bool:
        return name in self._contacts

    def __iter__(self) -> Iterator[Contact]:
        return iter(sorted(self._contacts.values(), key=lambda c: c.id))

    def get(self, name: str) -> Optional[Contact]:
        return self._contacts.get(name)

    def by_id(self, contact_id: int) -> Optional[Contact]:
        for contact in self._contacts.values():
            if contact.id == contact_id:
                return contact
        return None

    @property
    def used_ids(self) -> List[int]:
        return sorted(c.id for c in self._contacts.values())

    def set_contacts(self) -> List[Contact]:
        """Contacts currently registered in the estimator, ordered by id"""
        return [c for c in self if c.is_set]

    def create(
        self,
        name: str,
        sensor_name: Optional[str] = None,
        surface_name: Optional[str] = None
    ) -> Contact:
        """
        Create a contact in the first free slot

        Args:
            name: Contact name
            sensor_name: Force sensor measuring the contact
            surface_name: Associated contact surface

        Returns:
            The new contact, not yet set in the estimator

        Raises:
            ContactCapacityError: All slots are in use
        """
        if name in self._contacts:
            raise ValueError(f"Contact '{name}' already exists")

        used = set(self.used_ids)
        free = [i for i in range(self.max_contacts) if i not in used]
        if not free:
            raise ContactCapacityError(
                f"Cannot create contact '{name}': the {self.max_contacts} contact slots "
                f"are used by {sorted(self._contacts)}")

        contact = Contact(
            id=free[0],
            name=name,
            sensor_name=sensor_name,
            surface_name=surface_name,
            sensor_enabled=self.is_sensor_enabled(sensor_name),
        )
        self._contacts[name] = contact
        logger.debug("Contact '%s' created with id %d", name, contact.id)
        return contact

    def remove(self, name: str) -> Contact:
        """
        Destroy a contact and release its id

        The contact must already be unset in the estimator.
        """
        contact = self._contacts[name]
        if contact.is_set:
            raise ValueError(f"Contact '{name}' is still set in the estimator")
        del self._contacts[name]
        logger.debug("Contact '%s' destroyed, id %d released", name, contact.id)
        return contact

    def is_sensor_enabled(self, sensor_name: Optional[str]) -> bool:
        return sensor_name is not None and sensor_name not in self._disabled_sensors

    @property
    def disabled_sensors(self) -> Set[str]:
        return set(self._disabled_sensors)

    def set_sensor_enabled(self, sensor_name: str, enabled: bool) -> List[Contact]:
        """
        Enable or disable the use of a force sensor

        Args:
            sensor_name: Force sensor name
            enabled: New enable state

        Returns:
            Live contacts measured by this sensor
        """
        self._check_sensor(sensor_name)
        if enabled:
            self._disabled_sensors.discard(sensor_name)
        else:
            self._disabled_sensors.add(sensor_name)

        affected = [c for c in self if c.sensor_name == sensor_name]
        for contact in affected:
            contact.sensor_enabled = enabled
        return affected

    def _check_sensor(self, sensor_name: str):
        if self.known_sensors is not None and sensor_name not in self.known_sensors:
            raise ConfigurationError(
                f"Unknown force sensor '{sensor_name}', known sensors: {sorted(self.known_sensors)}")
