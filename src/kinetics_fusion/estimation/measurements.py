#!/usr/bin/env python3
"""
Per-tick measurements given to the fusion pipeline
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..utils.kinematics import Kinematics, KinematicsFlags


def _identity_pose() -> Kinematics:
    return Kinematics.zero(KinematicsFlags.POSE | KinematicsFlags.VEL | KinematicsFlags.ACC)


@dataclass
class ImuMeasurement:
    """
    IMU sample

    Attributes:
        accel: Specific force measured by the accelerometer (IMU frame)
        gyro: Angular velocity measured by the gyrometer (IMU frame)
        imu_kinematics: IMU frame in the floating-base frame
        accel_cov: Accelerometer covariance (3x3), configuration default if None
        gyro_cov: Gyrometer covariance (3x3), configuration default if None
    """
    accel: np.ndarray
    gyro: np.ndarray
    imu_kinematics: Kinematics = field(default_factory=_identity_pose)
    accel_cov: Optional[np.ndarray] = None
    gyro_cov: Optional[np.ndarray] = None

    def accel_in_base(self) -> np.ndarray:
        return self.imu_kinematics.orientation @ np.asarray(self.accel, dtype=float)

    def gyro_in_base(self) -> np.ndarray:
        return self.imu_kinematics.orientation @ np.asarray(self.gyro, dtype=float)


@dataclass
class CenterOfMass:
    """Center of mass kinematics in the floating-base frame"""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    acceleration: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def as_kinematics(self) -> Kinematics:
        """CoM frame in the floating base, axes aligned with the base"""
        return Kinematics(
            position=np.array(self.position, dtype=float),
            orientation=np.eye(3),
            lin_vel=np.array(self.velocity, dtype=float),
            ang_vel=np.zeros(3),
            lin_acc=np.array(self.acceleration, dtype=float),
            ang_acc=np.zeros(3),
        )


@dataclass
class TickInputs:
    """
    Everything the pipeline consumes during one control period

    Attributes:
        imus: IMU samples, the index in the list is the IMU index
        com: Center of mass in the floating-base frame
        wrenches: Sensor name -> wrench [force, torque] in sensor frame,
            gravity contribution of the sensor's own mass removed
        sensor_kinematics: Sensor name -> sensor frame in floating-base frame
        surface_kinematics: Surface name -> surface frame in floating-base frame
        reference_contact_kinematics: Contact name -> contact pose in the
            world frame from the kinematic model, used by direct odometry
        surface_contacts: Surface name -> contact predicate of an external
            planner, surfaces not listed are allowed
        detection_signals: Contact name -> detection signal overriding the
            force norm (e.g. normal force of a solver)
    """
    imus: List[ImuMeasurement] = field(default_factory=list)
    com: CenterOfMass = field(default_factory=CenterOfMass)
    wrenches: Dict[str, np.ndarray] = field(default_factory=dict)
    sensor_kinematics: Dict[str, Kinematics] = field(default_factory=dict)
    surface_kinematics: Dict[str, Kinematics] = field(default_factory=dict)
    reference_contact_kinematics: Dict[str, Kinematics] = field(default_factory=dict)
    surface_contacts: Dict[str, bool] = field(default_factory=dict)
    detection_signals: Dict[str, float] = field(default_factory=dict)
