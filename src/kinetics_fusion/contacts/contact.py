#!/usr/bin/env python3
"""
Contact record
State of one contact between the robot and its environment
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Optional

from ..utils.kinematics import Kinematics, KinematicsFlags


@dataclass
class Contact:
    """
    Contact between a robot body and the environment

    Frames:
        contact frame: the contact surface frame, or the sensor frame when
            no surface is associated to the contact
        floating-base frame: frame of the robot's free-floating base

    Attributes:
        id: Slot of the contact in the estimator, unique while the contact lives
        name: Surface name when a surface is associated, sensor name otherwise
        sensor_name: Force sensor measuring the contact (None if unsensed)
        surface_name: Associated contact surface (optional)
        sensor_enabled: Whether the force measurement is given to the estimator
        is_set: Contact currently registered in the estimator
        was_already_set: Contact was already set at the previous tick
        rest_kinematics: Rest (undeformed) pose in the world frame
        wrench: Measured wrench [force, torque] in the contact frame
        contact_sensor_kinematics: Sensor frame expressed in the contact frame
        fb_contact_kinematics: Contact frame expressed in the floating-base frame
        force_norm: Norm of the measured force
    """
    id: int
    name: str
    sensor_name: Optional[str] = None
    surface_name: Optional[str] = None
    sensor_enabled: bool = True
    is_set: bool = False
    was_already_set: bool = False
    rest_kinematics: Optional[Kinematics] = None
    wrench: np.ndarray = field(default_factory=lambda: np.zeros(6))
    contact_sensor_kinematics: Kinematics = field(
        default_factory=lambda: Kinematics.zero(KinematicsFlags.POSE))
    fb_contact_kinematics: Optional[Kinematics] = None
    force_norm: float = 0.0

    @property
    def sensor_attached_to_surface(self) -> bool:
        """Sensor and contact frames differ, wrenches must be transported"""
        return self.surface_name is not None

    @property
    def has_sensor(self) -> bool:
        return self.sensor_name is not None

    @property
    def uses_sensor(self) -> bool:
        """Force measurement is used for this contact"""
        return self.has_sensor and self.sensor_enabled

    @property
    def force(self) -> np.ndarray:
        return self.wrench[:3]

    @property
    def torque(self) -> np.ndarray:
        return self.wrench[3:6]

    def reset(self):
        """Mark the contact as no longer in contact"""
        self.is_set = False
        self.was_already_set = False
        self.rest_kinematics = None
        self.wrench = np.zeros(6)
        self.force_norm = 0.0
