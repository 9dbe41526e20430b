#!/usr/bin/env python3
"""
Backup Estimator
Cheap floating-base estimator used while the primary estimator recovers:
tilt from a gyro / accelerometer complementary filter, position and
velocity from leg odometry blended with the IMU

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from .history_buffer import HistoryBuffer
from .measurements import ImuMeasurement
from ..contacts.rest_kinematics import OdometryType
from ..exceptions import EmptyHistoryError
from ..utils.filters import ComplementaryFilter
from ..utils.kinematics import Kinematics
from ..utils.math_utils import orthonormalize, rotation_vector_to_matrix

logger = logging.getLogger(__name__)


@dataclass
class BackupEstimatorConfig:
    """Backup estimator configuration"""
    # Gain of the accelerometer correction of the tilt
    tilt_gain: float = 2.0

    # Accelerometer used for the tilt only when | |a| - g | < tolerance * g
    accel_tolerance: float = 0.1

    # Complementary filter time constants (s), large values trust the IMU
    velocity_time_constant: float = 0.05
    position_time_constant: float = 0.5

    initial_position: np.ndarray = field(default_factory=lambda: np.zeros(3))


class BackupEstimator:
    """
    Complementary tilt and leg-odometry estimator

    Orientation:
        gyro integration corrected toward the measured gravity direction,
        omega = gyro + k (z_meas x z_est), z_est = R^T e_z

    Position / velocity:
        an anchor point (mean of the set contacts) is fixed in the world
        while the contact set is unchanged; the base pose follows from the
        anchor position in the base frame. Velocities from the kinematics
        are blended with the integrated IMU acceleration. Without contact
        the base is integrated ballistically.

    Every estimate is kept in a buffer one entry longer than the fusion
    history, so that the two stay aligned when a fault is detected.
    """

    def __init__(
        self,
        config: BackupEstimatorConfig = None,
        dt: float = 0.005,
        gravity: float = 9.81,
        odometry_type: OdometryType = OdometryType.ODOMETRY_6D,
        history_capacity: int = 200,
        ground_height: float = 0.0
    ):
        """
        Initialize backup estimator

        Args:
            config: Filter configuration
            dt: Control period (s)
            gravity: Gravity norm (m/s^2)
            odometry_type: Flat odometry keeps the anchor at ground height
            history_capacity: Capacity of the fusion history
            ground_height: Ground altitude for flat odometry
        """
        self.config = config or BackupEstimatorConfig()
        self.dt = dt
        self.gravity = gravity
        self.g_world = np.array([0.0, 0.0, -gravity])
        self.odometry_type = odometry_type
        self.ground_height = ground_height

        self.position = np.array(self.config.initial_position, dtype=float)
        self.orientation = np.eye(3)
        self.velocity = np.zeros(3)

        self._velocity_filter = ComplementaryFilter(dt, self.config.velocity_time_constant)
        self._position_filter = ComplementaryFilter(dt, self.config.position_time_constant)

        self._anchor_world: Optional[np.ndarray] = None
        self._anchor_contacts: FrozenSet[str] = frozenset()

        self._buffer = deque(maxlen=history_capacity + 1)

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def last_estimate(self) -> Kinematics:
        if not self._buffer:
            raise EmptyHistoryError("Backup estimator has not run yet")
        return self._buffer[-1].copy()

    def set_odometry_type(self, odometry_type: OdometryType):
        self.odometry_type = odometry_type
        # Re-seed the anchor with the new convention
        self._anchor_contacts = frozenset()

    def run(
        self,
        imu: Optional[ImuMeasurement],
        contacts: Dict[str, Kinematics]
    ) -> Kinematics:
        """
        Estimate the floating base for one tick

        Args:
            imu: Main IMU sample (None if unavailable)
            contacts: Name -> contact frame in the floating base, for the set contacts

        Returns:
            Floating-base kinematics in the world
        """
        dt = self.dt

        if imu is not None:
            accel_b = imu.accel_in_base()
            gyro_b = imu.gyro_in_base()
        else:
            accel_b = -self.orientation.T @ self.g_world
            gyro_b = np.zeros(3)

        omega = gyro_b + self._tilt_correction(accel_b)
        R = orthonormalize(self.orientation @ rotation_vector_to_matrix(omega * dt))
        self.orientation = R

        accel_w = R @ accel_b + self.g_world

        if contacts:
            positions = [k.position for k in contacts.values()]
            velocities = [k.lin_vel if k.lin_vel is not None else np.zeros(3)
                          for k in contacts.values()]
            p_a = np.mean(positions, axis=0)
            v_a = np.mean(velocities, axis=0)

            names = frozenset(contacts)
            if self._anchor_world is None or names != self._anchor_contacts:
                anchor = self.position + R @ p_a
                if self.odometry_type is OdometryType.FLAT:
                    anchor[2] = self.ground_height
                self._anchor_world = anchor
                self._anchor_contacts = names
                logger.debug("Backup anchor re-seeded on contacts %s", sorted(names))

            p_leg = self._anchor_world - R @ p_a
            v_leg = -R @ (v_a + np.cross(gyro_b, p_a))

            self.velocity = self._velocity_filter.update(v_leg, accel_w)
            self.position = self._position_filter.update(p_leg, self.velocity)
        else:
            self._anchor_world = None
            self._anchor_contacts = frozenset()

            self.velocity = self.velocity + accel_w * dt
            self.position = self.position + self.velocity * dt
            self._velocity_filter.reset(self.velocity)
            self._position_filter.reset(self.position)

        estimate = Kinematics(
            position=self.position.copy(),
            orientation=R.copy(),
            lin_vel=self.velocity.copy(),
            ang_vel=R @ gyro_b,
            lin_acc=accel_w,
            ang_acc=np.zeros(3),
        )
        self._buffer.append(estimate)
        return estimate.copy()

    def _tilt_correction(self, accel_b: np.ndarray) -> np.ndarray:
        """Angular velocity correction toward the measured gravity direction"""
        norm = np.linalg.norm(accel_b)
        if norm < 1e-9 or abs(norm - self.gravity) > self.config.accel_tolerance * self.gravity:
            return np.zeros(3)
        z_meas = accel_b / norm
        z_est = self.orientation.T @ np.array([0.0, 0.0, 1.0])
        return self.config.tilt_gain * np.cross(z_meas, z_est)

    def apply_last_transformation(self, kinematics: Kinematics) -> Kinematics:
        """
        Move a floating-base estimate by the last displacement of this estimator

        Args:
            kinematics: Estimate of the previous tick

        Returns:
            kinematics composed with the displacement between the last two
            backup estimates, with the backup velocities
        """
        if not self._buffer:
            raise EmptyHistoryError("Backup estimator has not run yet")

        result = kinematics.pose()
        if len(self._buffer) >= 2:
            previous, last = self._buffer[-2], self._buffer[-1]
            result = result * (previous.pose().inverse() * last.pose())
        return self._with_velocities_of(result, self._buffer[-1])

    def reconstruct(self, history: HistoryBuffer) -> Kinematics:
        """
        Rebuild the current floating-base estimate from the history

        Starts from the oldest history entry and replays the backup
        displacements recorded since that tick.

        Raises:
            EmptyHistoryError: The history holds no entry
        """
        n = len(history)
        if n == 0:
            raise EmptyHistoryError("Cannot reconstruct from an empty history")

        # Backup entry aligned with each history entry, plus the current tick
        m = min(n + 1, len(self._buffer))
        if m == 0:
            return history.latest().copy()

        backups = list(self._buffer)[-m:]
        result = history[n - (m - 1)].pose()

        for previous, current in zip(backups, backups[1:]):
            result = result * (previous.pose().inverse() * current.pose())

        return self._with_velocities_of(result, backups[-1])

    @staticmethod
    def _with_velocities_of(pose: Kinematics, backup: Kinematics) -> Kinematics:
        """Velocities of a backup estimate re-expressed in the frame of pose"""
        rotation = pose.orientation @ backup.orientation.T
        pose.lin_vel = rotation @ backup.lin_vel
        pose.ang_vel = rotation @ backup.ang_vel
        return pose
