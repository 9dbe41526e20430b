#!/usr/bin/env python3
"""
Contact Rest Kinematics
Reference (undeformed) pose of contacts from a kinematic model or from
the inversion of the linear visco-elastic contact model

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .contact import Contact
from ..exceptions import ConfigurationError
from ..utils.kinematics import Kinematics
from ..utils.math_utils import axis_angle_to_rotation_matrix, rotation_matrix_to_rotation_vector

logger = logging.getLogger(__name__)

# Below this norm the deformation rotation has no defined axis
_SINGULAR_EPS = 1e-12


class OdometryType(Enum):
    """Source of the contact rest kinematics"""
    NONE = "None"
    ODOMETRY_6D = "6D"
    FLAT = "Flat"

    @classmethod
    def from_string(cls, name) -> 'OdometryType':
        if name is None:
            return cls.NONE
        for odometry in cls:
            if odometry.value.lower() == str(name).lower():
                return odometry
        raise ConfigurationError(
            f"Unknown odometry type '{name}', expected one of {[o.value for o in cls]}")

    @property
    def is_odometry(self) -> bool:
        return self is not OdometryType.NONE


@dataclass
class ContactStiffness:
    """Diagonal gains of the linear visco-elastic contact model"""
    lin_stiffness: np.ndarray = field(default_factory=lambda: np.full(3, 4e4))
    lin_damping: np.ndarray = field(default_factory=lambda: np.full(3, 50.0))
    ang_stiffness: np.ndarray = field(default_factory=lambda: np.full(3, 200.0))
    ang_damping: np.ndarray = field(default_factory=lambda: np.full(3, 10.0))

    def __post_init__(self):
        for name in ('lin_stiffness', 'lin_damping', 'ang_stiffness', 'ang_damping'):
            value = np.broadcast_to(np.asarray(getattr(self, name), dtype=float), (3,)).copy()
            setattr(self, name, value)
        if np.any(self.lin_stiffness <= 0.0) or np.any(self.ang_stiffness <= 0.0):
            raise ConfigurationError("Contact stiffnesses must be strictly positive")

    @property
    def Kp(self) -> np.ndarray:
        return np.diag(self.lin_stiffness)

    @property
    def Dp(self) -> np.ndarray:
        return np.diag(self.lin_damping)

    @property
    def Kr(self) -> np.ndarray:
        return np.diag(self.ang_stiffness)

    @property
    def Dr(self) -> np.ndarray:
        return np.diag(self.ang_damping)


@dataclass
class ContactCovariances:
    """
    Covariances of a contact state [position, orientation, force, torque]

    Attributes:
        init_first: Initial variances when no other contact is set
        init_new: Initial variances when other contacts are already set
        process: Process variances
    """
    init_first: np.ndarray = field(default_factory=lambda: np.concatenate(
        [np.full(3, 1e-8), np.full(3, 1e-8), np.full(3, 1e-6), np.full(3, 1e-6)]))
    init_new: np.ndarray = field(default_factory=lambda: np.concatenate(
        [np.full(3, 1e-4), np.full(3, 1e-4), np.full(3, 1e-6), np.full(3, 1e-6)]))
    process: np.ndarray = field(default_factory=lambda: np.concatenate(
        [np.zeros(3), np.zeros(3), np.full(3, 1e-4), np.full(3, 1e-4)]))

    def __post_init__(self):
        for name in ('init_first', 'init_new', 'process'):
            value = np.asarray(getattr(self, name), dtype=float)
            if value.shape != (12,):
                raise ConfigurationError(
                    f"Contact {name} variances must have 12 entries, got shape {value.shape}")
            setattr(self, name, value)


class RestKinematicsResolver:
    """
    Computes the rest kinematics of contacts

    Direct mode takes the contact pose of the externally supplied kinematic
    model. Odometry modes invert the visco-elastic model: the measured
    wrench and the current estimate of the deformed contact pose give the
    undeformed pose

        p_rest = R Kp^-1 (F + R^T Dp v) + p
        R_rest = D^T R

    where D is the deformation rotation whose axis is d / |d| and whose
    angle is asin(|d| / 2), with d = -2 R Kr^-1 (tau + R^T Dr w).
    """

    def __init__(
        self,
        stiffness: Optional[ContactStiffness] = None,
        odometry_type: OdometryType = OdometryType.NONE,
        covariances: Optional[ContactCovariances] = None,
        ground_height: float = 0.0
    ):
        self.stiffness = stiffness or ContactStiffness()
        self.odometry_type = odometry_type
        self.covariances = covariances or ContactCovariances()
        self.ground_height = ground_height

    def resolve(
        self,
        contact: Contact,
        world_contact_kinematics: Kinematics,
        model_kinematics: Optional[Kinematics] = None
    ) -> Kinematics:
        """
        Rest kinematics of a contact in the world frame

        Args:
            contact: Contact, its wrench must be expressed in the contact frame
            world_contact_kinematics: Current estimate of the contact frame in the world
            model_kinematics: Contact pose in the kinematic model (direct mode)

        Returns:
            Rest pose of the contact
        """
        if not self.odometry_type.is_odometry:
            source = model_kinematics if model_kinematics is not None else world_contact_kinematics
            return source.pose()

        if not contact.sensor_enabled:
            logger.warning(
                "Sensor of contact '%s' is disabled but required by the odometry, "
                "it is used for the rest pose only", contact.name)

        return self.rest_from_wrench(world_contact_kinematics, contact.wrench)

    def rest_from_wrench(self, deformed: Kinematics, wrench: np.ndarray) -> Kinematics:
        """
        Invert the visco-elastic model

        Args:
            deformed: Deformed contact kinematics in the world (pose, optional velocities)
            wrench: Contact wrench [force, torque] in the contact frame

        Returns:
            Rest pose of the contact
        """
        R = deformed.orientation
        p = deformed.position
        v = deformed.lin_vel if deformed.lin_vel is not None else np.zeros(3)
        w = deformed.ang_vel if deformed.ang_vel is not None else np.zeros(3)
        force = np.asarray(wrench[:3], dtype=float)
        torque = np.asarray(wrench[3:6], dtype=float)
        s = self.stiffness

        position = R @ ((force + R.T @ (s.lin_damping * v)) / s.lin_stiffness) + p

        torque_c = torque + R.T @ (s.ang_damping * w)
        d = -2.0 * R @ (torque_c / s.ang_stiffness)
        d_norm = np.linalg.norm(d)

        if d_norm < _SINGULAR_EPS:
            orientation = np.array(R, dtype=float)
        else:
            angle = np.arcsin(np.clip(d_norm / 2.0, -1.0, 1.0))
            deformation = axis_angle_to_rotation_matrix(d / d_norm, angle)
            orientation = deformation.T @ R

        if self.odometry_type is OdometryType.FLAT:
            position[2] = self.ground_height

        return Kinematics(position=position, orientation=orientation)

    def viscoelastic_wrench(self, rest: Kinematics, deformed: Kinematics) -> np.ndarray:
        """
        Wrench produced by the visco-elastic model

        Args:
            rest: Rest pose of the contact in the world
            deformed: Deformed contact kinematics in the world

        Returns:
            Wrench [force, torque] in the contact frame
        """
        R = deformed.orientation
        v = deformed.lin_vel if deformed.lin_vel is not None else np.zeros(3)
        w = deformed.ang_vel if deformed.ang_vel is not None else np.zeros(3)
        s = self.stiffness

        force = s.lin_stiffness * (R.T @ (rest.position - deformed.position)) \
            - R.T @ (s.lin_damping * v)

        # Deformation rotation D = R R_rest^T, sin(angle) * axis
        rotvec = rotation_matrix_to_rotation_vector(R @ rest.orientation.T)
        angle = np.linalg.norm(rotvec)
        if angle < _SINGULAR_EPS:
            sin_axis = np.zeros(3)
        else:
            sin_axis = np.sin(angle) * rotvec / angle
        torque = -s.ang_stiffness * (R.T @ sin_axis) - R.T @ (s.ang_damping * w)

        return np.concatenate([force, torque])

    def initial_covariance(self, number_of_set_contacts: int) -> np.ndarray:
        """
        Initial 12x12 covariance of a new contact

        Args:
            number_of_set_contacts: Contacts already set in the estimator

        Returns:
            "First contacts" covariance if none is set, "new contacts" otherwise.
            The z position variance is zero in flat odometry.
        """
        if number_of_set_contacts > 0:
            variances = self.covariances.init_new.copy()
        else:
            variances = self.covariances.init_first.copy()
        if self.odometry_type is OdometryType.FLAT:
            variances[2] = 0.0
        return np.diag(variances)

    def process_covariance(self) -> np.ndarray:
        return np.diag(self.covariances.process)
