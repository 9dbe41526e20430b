#!/usr/bin/env python3
"""
Kinetics Estimator interface
Contract of the primary floating-base estimator and the adapter that
enforces its call protocol

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Set

from ..exceptions import EstimatorContractError
from ..utils.kinematics import Kinematics

logger = logging.getLogger(__name__)


@dataclass
class ContactEstimate:
    """Estimated state of a contact with diagonal covariances"""
    position: np.ndarray
    orientation: np.ndarray
    force: np.ndarray
    torque: np.ndarray
    position_covariance: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation_covariance: np.ndarray = field(default_factory=lambda: np.zeros(3))
    force_covariance: np.ndarray = field(default_factory=lambda: np.zeros(3))
    torque_covariance: np.ndarray = field(default_factory=lambda: np.zeros(3))


class KineticsEstimator(ABC):
    """
    Primary floating-base estimator

    Fuses IMU and contact measurements. Contact kinematics are given in
    the floating-base frame, rest kinematics in the world frame. The
    estimator raises `fault_detected` instead of raising when its state
    becomes non-finite.
    """

    @abstractmethod
    def add_contact(
        self,
        contact_id: int,
        rest_kinematics: Kinematics,
        init_covariance: np.ndarray,
        process_covariance: np.ndarray,
        lin_stiffness: np.ndarray,
        lin_damping: np.ndarray,
        ang_stiffness: np.ndarray,
        ang_damping: np.ndarray
    ):
        """Register a contact with its rest pose and visco-elastic gains"""

    @abstractmethod
    def update_contact_with_sensor(
        self,
        contact_id: int,
        wrench: np.ndarray,
        sensor_covariance: np.ndarray,
        input_kinematics: Kinematics
    ):
        """Contact measurement: wrench in contact frame, contact in floating-base frame"""

    @abstractmethod
    def update_contact_without_sensor(self, contact_id: int, input_kinematics: Kinematics):
        """Contact kinematics in floating-base frame, no force measurement"""

    @abstractmethod
    def remove_contact(self, contact_id: int):
        pass

    @abstractmethod
    def set_imu(
        self,
        accel: np.ndarray,
        gyro: np.ndarray,
        accel_cov: np.ndarray,
        gyro_cov: np.ndarray,
        imu_kinematics: Kinematics,
        index: int = 0
    ):
        pass

    @abstractmethod
    def set_center_of_mass(
        self,
        position: np.ndarray,
        velocity: np.ndarray,
        acceleration: np.ndarray
    ):
        pass

    @abstractmethod
    def set_additional_wrench(self, force: np.ndarray, torque: np.ndarray):
        """External wrench not due to set contacts, floating-base frame"""

    @abstractmethod
    def update(self) -> np.ndarray:
        """Advance one period, returns the state vector"""

    @property
    @abstractmethod
    def fault_detected(self) -> bool:
        pass

    @abstractmethod
    def clear_fault(self):
        pass

    @abstractmethod
    def inject_fault(self):
        """Raise the fault flag as a divergence would"""

    @abstractmethod
    def get_global_kinematics_of(self, local_kinematics: Kinematics) -> Kinematics:
        """Kinematics of a frame given in the floating base, expressed in the world"""

    @abstractmethod
    def set_world_centroid_kinematics(self, kinematics: Kinematics, reset_covariance: bool = True):
        """Reset the state from the centroid kinematics (CoM position, base orientation)"""

    @abstractmethod
    def set_state_contact(
        self,
        contact_id: int,
        rest_kinematics: Kinematics,
        wrench: np.ndarray,
        reset_covariance: bool = True
    ):
        pass

    @abstractmethod
    def set_gyro_bias(self, bias: np.ndarray, index: int = 0, reset_covariance: bool = True):
        pass

    @abstractmethod
    def set_state_unmodeled_wrench(self, wrench: np.ndarray, reset_covariance: bool = True):
        pass

    @property
    @abstractmethod
    def number_of_set_contacts(self) -> int:
        pass

    @abstractmethod
    def get_contact_estimate(self, contact_id: int) -> ContactEstimate:
        pass


class PrimaryEstimatorAdapter:
    """
    Enforces the call contract of a KineticsEstimator

    - a contact id is added once, below max_contacts
    - each registered contact is updated exactly once per tick
    - updates and removals only target registered ids
    """

    def __init__(self, estimator: KineticsEstimator, max_contacts: int):
        self.estimator = estimator
        self.max_contacts = max_contacts

        self._registered: Set[int] = set()
        self._updated: Set[int] = set()

    def is_registered(self, contact_id: int) -> bool:
        return contact_id in self._registered

    def add_contact(
        self,
        contact_id: int,
        rest_kinematics: Kinematics,
        init_covariance: np.ndarray,
        process_covariance: np.ndarray,
        lin_stiffness: np.ndarray,
        lin_damping: np.ndarray,
        ang_stiffness: np.ndarray,
        ang_damping: np.ndarray
    ):
        if not 0 <= contact_id < self.max_contacts:
            raise EstimatorContractError(
                f"Contact id {contact_id} outside [0, {self.max_contacts})")
        if contact_id in self._registered:
            raise EstimatorContractError(f"Contact id {contact_id} is already registered")

        self.estimator.add_contact(
            contact_id, rest_kinematics, init_covariance, process_covariance,
            lin_stiffness, lin_damping, ang_stiffness, ang_damping)
        self._registered.add(contact_id)

    def update_contact(
        self,
        contact_id: int,
        input_kinematics: Kinematics,
        wrench: Optional[np.ndarray] = None,
        sensor_covariance: Optional[np.ndarray] = None
    ):
        """
        Feed the per-tick contact measurement

        Args:
            contact_id: Registered contact id
            input_kinematics: Contact frame in floating-base frame
            wrench: Wrench in contact frame, None if the sensor is not used
            sensor_covariance: 6x6 wrench covariance
        """
        self._check_registered(contact_id)
        if contact_id in self._updated:
            raise EstimatorContractError(f"Contact id {contact_id} already updated this tick")

        if wrench is None:
            self.estimator.update_contact_without_sensor(contact_id, input_kinematics)
        else:
            self.estimator.update_contact_with_sensor(
                contact_id, wrench, sensor_covariance, input_kinematics)
        self._updated.add(contact_id)

    def remove_contact(self, contact_id: int):
        self._check_registered(contact_id)
        self.estimator.remove_contact(contact_id)
        self._registered.discard(contact_id)
        self._updated.discard(contact_id)

    def set_state_contact(
        self,
        contact_id: int,
        rest_kinematics: Kinematics,
        wrench: np.ndarray,
        reset_covariance: bool = True
    ):
        self._check_registered(contact_id)
        self.estimator.set_state_contact(contact_id, rest_kinematics, wrench, reset_covariance)

    def update(self) -> np.ndarray:
        """Advance the estimator, every registered contact must have been updated"""
        missing = self._registered - self._updated
        if missing:
            raise EstimatorContractError(
                f"Contacts {sorted(missing)} were not updated before the estimator update")
        self._updated.clear()
        return self.estimator.update()

    def _check_registered(self, contact_id: int):
        if contact_id not in self._registered:
            raise EstimatorContractError(f"Contact id {contact_id} is not registered")

    def __getattr__(self, name):
        # Remaining calls carry no contract
        return getattr(self.estimator, name)
