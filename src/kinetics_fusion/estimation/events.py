#!/usr/bin/env python3
"""
Fusion events
Notable changes reported once per tick to the telemetry consumers
"""

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class ContactAdded:
    tick: int
    name: str
    contact_id: int


@dataclass(frozen=True)
class ContactRemoved:
    tick: int
    name: str
    contact_id: int


@dataclass(frozen=True)
class ContactSensorToggled:
    tick: int
    sensor_name: str
    enabled: bool


@dataclass(frozen=True)
class FaultEntered:
    tick: int
    early: bool = False
    repeated: bool = False


@dataclass(frozen=True)
class RecoveryCompleted:
    tick: int


FusionEvent = Union[ContactAdded, ContactRemoved, ContactSensorToggled, FaultEntered, RecoveryCompleted]
