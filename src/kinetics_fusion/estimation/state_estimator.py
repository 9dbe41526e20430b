#!/usr/bin/env python3
"""
Contact-aided EKF
Reference primary estimator: IMU-driven prediction of the floating base,
corrected by the rest positions of the contacts

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Optional

from .kinetics_estimator import ContactEstimate, KineticsEstimator
from ..utils.kinematics import Kinematics
from ..utils.math_utils import (
    compute_jacobian_numerical,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    skew_symmetric
)

logger = logging.getLogger(__name__)


@dataclass
class EstimatorConfig:
    """EKF configuration"""
    dt: float = 0.005
    gravity: float = 9.81
    mass: float = 40.0

    # Initial variances
    position_init_variance: float = 1e-8
    orientation_init_variance: float = 1e-4
    lin_vel_init_variance: float = 1e-4
    gyro_bias_init_variance: float = 1e-6
    unmodeled_wrench_init_variance: float = 1e-1

    # Process noise (variance rate)
    process_noise_position: float = 1e-8
    process_noise_velocity: float = 1e-4
    process_noise_orientation: float = 1e-6
    process_noise_gyro_bias: float = 1e-10
    process_noise_unmodeled_wrench: float = 1e-3

    # Measurement noise
    measurement_noise_contact_position: float = 1e-6

    with_gyro_bias: bool = True
    with_unmodeled_wrench: bool = False
    with_finite_differences: bool = False
    finite_difference_step: float = 1e-6

    initial_position: np.ndarray = field(default_factory=lambda: np.zeros(3))


@dataclass
class _ContactSlot:
    rest_kinematics: Kinematics
    covariance: np.ndarray
    process_covariance: np.ndarray
    lin_stiffness: np.ndarray
    lin_damping: np.ndarray
    ang_stiffness: np.ndarray
    ang_damping: np.ndarray
    init_covariance: np.ndarray
    wrench: np.ndarray = field(default_factory=lambda: np.zeros(6))
    input_kinematics: Optional[Kinematics] = None
    with_sensor: bool = False


class ContactEKF(KineticsEstimator):
    """
    Extended Kalman Filter on the floating base

    State vector: x = [p, v, q, b_g] in R^13
    - p: position in world (3)
    - v: linear velocity in world (3)
    - q: orientation quaternion [w, x, y, z] (4)
    - b_g: gyroscope bias of IMU 0 (3)

    The covariance is kept on the 12-dimensional error state
    [dp, dv, dtheta, db_g], with the orientation error applied on the
    right: R = R_est exp(dtheta).

    Predictions:
    - IMU 0 for velocity and orientation
    - With with_unmodeled_wrench, the velocity follows the forces on the
      robot instead: measured contact forces, the additional wrench and an
      unmodeled force, the latter corrected by the accelerometer

    Updates:
    - Rest position of every set contact. When the contact force is
      measured, the elastic deflection R_c Kp^-1 F is part of the model.
    """

    def __init__(self, config: EstimatorConfig = None):
        """
        Initialize estimator

        Args:
            config: Estimator configuration
        """
        self.config = config or EstimatorConfig()

        self.state_dim = 13
        self.error_dim = 12

        self.g_world = np.array([0.0, 0.0, -self.config.gravity])

        self._contacts: Dict[int, _ContactSlot] = {}
        self._imus: Dict[int, tuple] = {}

        self._com_position = np.zeros(3)
        self._com_velocity = np.zeros(3)
        self.additional_wrench = np.zeros(6)

        self._fault = False
        self.reset(self.config.initial_position)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def reset(self, position: np.ndarray = None, orientation: np.ndarray = None):
        """Reset state and covariance"""
        self.x = np.zeros(self.state_dim)
        self.x[6] = 1.0
        if position is not None:
            self.x[0:3] = position
        if orientation is not None:
            self.x[6:10] = rotation_matrix_to_quaternion(orientation)

        self.P = np.diag(self._init_variances())
        self.unmodeled_wrench = np.zeros(6)
        self.unmodeled_wrench_cov = np.eye(6) * self.config.unmodeled_wrench_init_variance

        self._lin_acc = np.zeros(3)
        self._ang_vel = np.zeros(3)

    def _init_variances(self) -> np.ndarray:
        c = self.config
        return np.concatenate([
            np.full(3, c.position_init_variance),
            np.full(3, c.lin_vel_init_variance),
            np.full(3, c.orientation_init_variance),
            np.full(3, c.gyro_bias_init_variance if c.with_gyro_bias else 0.0),
        ])

    def _process_variances(self) -> np.ndarray:
        c = self.config
        return np.concatenate([
            np.full(3, c.process_noise_position),
            np.full(3, c.process_noise_velocity),
            np.full(3, c.process_noise_orientation),
            np.full(3, c.process_noise_gyro_bias if c.with_gyro_bias else 0.0),
        ])

    @property
    def position(self) -> np.ndarray:
        return self.x[0:3].copy()

    @property
    def velocity(self) -> np.ndarray:
        return self.x[3:6].copy()

    @property
    def rotation(self) -> np.ndarray:
        return quaternion_to_rotation_matrix(self.x[6:10])

    @property
    def gyro_bias(self) -> np.ndarray:
        return self.x[10:13].copy()

    def _reset_covariance_block(self, start: int, variances: np.ndarray):
        block = slice(start, start + len(variances))
        self.P[block, :] = 0.0
        self.P[:, block] = 0.0
        self.P[block, block] = np.diag(variances)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

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
        self._contacts[contact_id] = _ContactSlot(
            rest_kinematics=rest_kinematics.pose(),
            covariance=np.array(init_covariance, dtype=float),
            process_covariance=np.array(process_covariance, dtype=float),
            lin_stiffness=np.asarray(lin_stiffness, dtype=float),
            lin_damping=np.asarray(lin_damping, dtype=float),
            ang_stiffness=np.asarray(ang_stiffness, dtype=float),
            ang_damping=np.asarray(ang_damping, dtype=float),
            init_covariance=np.array(init_covariance, dtype=float),
        )

    def update_contact_with_sensor(
        self,
        contact_id: int,
        wrench: np.ndarray,
        sensor_covariance: np.ndarray,
        input_kinematics: Kinematics
    ):
        slot = self._contacts[contact_id]
        slot.wrench = np.array(wrench, dtype=float)
        slot.input_kinematics = input_kinematics
        slot.with_sensor = True

    def update_contact_without_sensor(self, contact_id: int, input_kinematics: Kinematics):
        slot = self._contacts[contact_id]
        slot.input_kinematics = input_kinematics
        slot.with_sensor = False

    def remove_contact(self, contact_id: int):
        del self._contacts[contact_id]

    def set_imu(
        self,
        accel: np.ndarray,
        gyro: np.ndarray,
        accel_cov: np.ndarray,
        gyro_cov: np.ndarray,
        imu_kinematics: Kinematics,
        index: int = 0
    ):
        self._imus[index] = (
            np.asarray(accel, dtype=float),
            np.asarray(gyro, dtype=float),
            accel_cov,
            gyro_cov,
            imu_kinematics,
        )

    def set_center_of_mass(self, position: np.ndarray, velocity: np.ndarray, acceleration: np.ndarray):
        self._com_position = np.asarray(position, dtype=float)
        self._com_velocity = np.asarray(velocity, dtype=float)

    def set_additional_wrench(self, force: np.ndarray, torque: np.ndarray):
        self.additional_wrench = np.concatenate([force, torque])

    # ------------------------------------------------------------------
    # Filter
    # ------------------------------------------------------------------

    def update(self) -> np.ndarray:
        """
        Full EKF step: IMU prediction then contact corrections

        Returns:
            State vector after the update
        """
        if not self._is_finite():
            self._fault = True
            return self.x.copy()

        self.predict(self.config.dt)
        self.update_contacts()

        if not self._is_finite():
            logger.debug("Non-finite state after update")
            self._fault = True

        for slot in self._contacts.values():
            slot.input_kinematics = None

        return self.x.copy()

    def predict(self, dt: float):
        """
        Prediction step using IMU 0

        Without IMU the base is assumed to keep a constant velocity.
        """
        p = self.x[0:3]
        v = self.x[3:6]
        R = self.rotation
        b_g = self.x[10:13]

        imu = self._imus.get(0)
        if imu is not None:
            accel, gyro, accel_cov, _, imu_kinematics = imu
            R_bi = imu_kinematics.orientation
            accel_w = R @ R_bi @ accel + self.g_world
            omega = R_bi @ gyro - b_g
        else:
            accel_w = np.zeros(3)
            omega = np.zeros(3)

        if self.config.with_unmodeled_wrench:
            self.unmodeled_wrench_cov = self.unmodeled_wrench_cov \
                + np.eye(6) * self.config.process_noise_unmodeled_wrench * dt
            if imu is not None:
                R_wi = R @ R_bi
                self._update_unmodeled_force(R, accel_w, R_wi @ np.asarray(accel_cov) @ R_wi.T)
            accel_w = self._model_acceleration(R)

        # Specific force in the floating-base frame
        accel_b = R.T @ (accel_w - self.g_world)

        self.x[0:3] = p + v * dt + 0.5 * accel_w * dt * dt
        self.x[3:6] = v + accel_w * dt

        omega_mag = np.linalg.norm(omega)
        if omega_mag > 1e-10:
            axis = omega / omega_mag
            angle = omega_mag * dt
            dq = np.concatenate([[np.cos(angle / 2)], axis * np.sin(angle / 2)])
            q_new = self._quaternion_multiply(self.x[6:10], dq)
            self.x[6:10] = q_new / np.linalg.norm(q_new)

        self._lin_acc = accel_w
        self._ang_vel = R @ omega

        F = self._compute_jacobian_f(R, accel_b, omega, dt)
        self.P = F @ self.P @ F.T + np.diag(self._process_variances()) * dt

        for slot in self._contacts.values():
            slot.covariance = slot.covariance + slot.process_covariance * dt

    def _external_force(self, R: np.ndarray) -> np.ndarray:
        """Measured contact forces plus the additional force, world frame"""
        force = R @ self.additional_wrench[0:3]
        for slot in self._contacts.values():
            if slot.with_sensor and slot.input_kinematics is not None:
                force = force + R @ slot.input_kinematics.orientation @ slot.wrench[0:3]
        return force

    def _model_acceleration(self, R: np.ndarray) -> np.ndarray:
        """Acceleration of the base from the modeled and unmodeled forces"""
        force = self._external_force(R) + self.unmodeled_wrench[0:3]
        return force / self.config.mass + self.g_world

    def _update_unmodeled_force(self, R: np.ndarray, accel_w: np.ndarray, accel_cov_w: np.ndarray):
        """
        Correct the unmodeled force with the accelerometer

        The force the accelerometer measures beyond the modeled ones is
        taken as an observation of the unmodeled force. The torque part is
        carried but not observed.
        """
        m = self.config.mass
        measured = m * (accel_w - self.g_world) - self._external_force(R)

        P_u = self.unmodeled_wrench_cov[0:3, 0:3]
        K = P_u @ np.linalg.inv(P_u + m * m * accel_cov_w)

        self.unmodeled_wrench[0:3] = self.unmodeled_wrench[0:3] + K @ (measured - self.unmodeled_wrench[0:3])
        self.unmodeled_wrench_cov[0:3, 0:3] = (np.eye(3) - K) @ P_u

    def update_contacts(self):
        """Correct the state with the rest position of each measured contact"""
        for contact_id, slot in self._contacts.items():
            if slot.input_kinematics is None:
                continue

            offset = self._contact_offset(slot)
            y = slot.rest_kinematics.position - self._measurement_model(self.x, offset)

            if self.config.with_finite_differences:
                H = compute_jacobian_numerical(
                    lambda dx: self._measurement_model(self._boxplus(self.x, dx), offset),
                    np.zeros(self.error_dim),
                    self.config.finite_difference_step
                )
            else:
                H = np.zeros((3, self.error_dim))
                H[:, 0:3] = np.eye(3)
                H[:, 6:9] = -self.rotation @ skew_symmetric(offset)

            R_meas = slot.covariance[0:3, 0:3] \
                + np.eye(3) * self.config.measurement_noise_contact_position

            S = H @ self.P @ H.T + R_meas
            K = self.P @ H.T @ np.linalg.inv(S)

            dx = K @ y
            if not np.all(np.isfinite(dx)):
                self._fault = True
                return

            self.x = self._boxplus(self.x, dx)
            self.P = (np.eye(self.error_dim) - K @ H) @ self.P
            self.P = 0.5 * (self.P + self.P.T)

    def _contact_offset(self, slot: _ContactSlot) -> np.ndarray:
        """Rest position of the contact relative to the base, floating-base frame"""
        kine = slot.input_kinematics
        offset = np.array(kine.position, dtype=float)
        if slot.with_sensor:
            # Elastic deflection along the measured force
            offset = offset + kine.orientation @ (slot.wrench[0:3] / slot.lin_stiffness)
        return offset

    @staticmethod
    def _measurement_model(x: np.ndarray, offset: np.ndarray) -> np.ndarray:
        return x[0:3] + quaternion_to_rotation_matrix(x[6:10]) @ offset

    def _boxplus(self, x: np.ndarray, dx: np.ndarray) -> np.ndarray:
        """Apply an error-state correction to the state"""
        x_new = x.copy()
        x_new[0:3] += dx[0:3]
        x_new[3:6] += dx[3:6]

        dtheta = dx[6:9]
        angle = np.linalg.norm(dtheta)
        if angle > 1e-12:
            axis = dtheta / angle
            dq = np.concatenate([[np.cos(angle / 2)], axis * np.sin(angle / 2)])
            q_new = self._quaternion_multiply(x[6:10], dq)
            x_new[6:10] = q_new / np.linalg.norm(q_new)

        if self.config.with_gyro_bias:
            x_new[10:13] += dx[9:12]
        return x_new

    def _compute_jacobian_f(
        self,
        R: np.ndarray,
        accel: np.ndarray,
        omega: np.ndarray,
        dt: float
    ) -> np.ndarray:
        """Compute error-state transition Jacobian"""
        F = np.eye(self.error_dim)

        # dp/dv
        F[0:3, 3:6] = np.eye(3) * dt

        # dv/dtheta
        F[3:6, 6:9] = -R @ skew_symmetric(accel) * dt

        # dtheta/dtheta
        F[6:9, 6:9] = np.eye(3) - skew_symmetric(omega) * dt

        # dtheta/db_g
        if self.config.with_gyro_bias:
            F[6:9, 9:12] = -np.eye(3) * dt

        return F

    def _quaternion_multiply(self, q1: np.ndarray, q2: np.ndarray) -> np.ndarray:
        """Multiply two quaternions [w, x, y, z]"""
        w1, x1, y1, z1 = q1
        w2, x2, y2, z2 = q2

        return np.array([
            w1*w2 - x1*x2 - y1*y2 - z1*z2,
            w1*x2 + x1*w2 + y1*z2 - z1*y2,
            w1*y2 - x1*z2 + y1*w2 + z1*x2,
            w1*z2 + x1*y2 - y1*x2 + z1*w2
        ])

    def _is_finite(self) -> bool:
        return bool(np.all(np.isfinite(self.x)) and np.all(np.isfinite(self.P)))

    # ------------------------------------------------------------------
    # Fault handling and resynchronization
    # ------------------------------------------------------------------

    @property
    def fault_detected(self) -> bool:
        return self._fault

    def clear_fault(self):
        self._fault = False

    def inject_fault(self):
        self._fault = True

    def base_kinematics(self) -> Kinematics:
        """Floating base in the world"""
        return Kinematics(
            position=self.position,
            orientation=self.rotation,
            lin_vel=self.velocity,
            ang_vel=self._ang_vel.copy(),
            lin_acc=self._lin_acc.copy(),
            ang_acc=np.zeros(3),
        )

    def get_global_kinematics_of(self, local_kinematics: Kinematics) -> Kinematics:
        return self.base_kinematics() * local_kinematics

    def set_world_centroid_kinematics(self, kinematics: Kinematics, reset_covariance: bool = True):
        com_local = Kinematics(
            position=self._com_position.copy(),
            orientation=np.eye(3),
            lin_vel=self._com_velocity.copy(),
            ang_vel=np.zeros(3),
        )
        base = kinematics * com_local.inverse()

        self.x[0:3] = base.position
        self.x[6:10] = rotation_matrix_to_quaternion(base.orientation)
        if base.lin_vel is not None:
            self.x[3:6] = base.lin_vel
        if kinematics.ang_vel is not None:
            self._ang_vel = np.array(kinematics.ang_vel, dtype=float)

        if reset_covariance:
            init = self._init_variances()
            self._reset_covariance_block(0, init[0:9])

    def set_state_contact(
        self,
        contact_id: int,
        rest_kinematics: Kinematics,
        wrench: np.ndarray,
        reset_covariance: bool = True
    ):
        slot = self._contacts[contact_id]
        slot.rest_kinematics = rest_kinematics.pose()
        slot.wrench = np.array(wrench, dtype=float)
        if reset_covariance:
            slot.covariance = slot.init_covariance.copy()

    def set_gyro_bias(self, bias: np.ndarray, index: int = 0, reset_covariance: bool = True):
        if index != 0:
            # Only the bias of IMU 0 is estimated
            logger.debug("Gyro bias of IMU %d is not estimated, ignored", index)
            return
        self.x[10:13] = bias
        if reset_covariance:
            self._reset_covariance_block(9, self._init_variances()[9:12])

    def set_state_unmodeled_wrench(self, wrench: np.ndarray, reset_covariance: bool = True):
        self.unmodeled_wrench = np.array(wrench, dtype=float)
        if reset_covariance:
            self.unmodeled_wrench_cov = np.eye(6) * self.config.unmodeled_wrench_init_variance

    @property
    def number_of_set_contacts(self) -> int:
        return len(self._contacts)

    def get_contact_estimate(self, contact_id: int) -> ContactEstimate:
        slot = self._contacts[contact_id]
        diag = np.diag(slot.covariance)
        return ContactEstimate(
            position=slot.rest_kinematics.position.copy(),
            orientation=slot.rest_kinematics.orientation.copy(),
            force=slot.wrench[0:3].copy(),
            torque=slot.wrench[3:6].copy(),
            position_covariance=diag[0:3].copy(),
            orientation_covariance=diag[3:6].copy(),
            force_covariance=diag[6:9].copy(),
            torque_covariance=diag[9:12].copy(),
        )
