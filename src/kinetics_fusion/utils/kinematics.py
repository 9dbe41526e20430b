#!/usr/bin/env python3
"""
Kinematics record for rigid frames
Pose, velocity and acceleration of a frame expressed in a parent frame,
with per-field validity, composition, inversion and conversions to
homogeneous transforms and spatial vectors
"""

import numpy as np
from dataclasses import dataclass
from enum import Flag, auto
from typing import Optional


class KinematicsFlags(Flag):
    """Fields of a kinematics record"""
    POSITION = auto()
    ORIENTATION = auto()
    LIN_VEL = auto()
    ANG_VEL = auto()
    LIN_ACC = auto()
    ANG_ACC = auto()

    POSE = POSITION | ORIENTATION
    VEL = LIN_VEL | ANG_VEL
    ACC = LIN_ACC | ANG_ACC
    ALL = POSE | VEL | ACC


def _copy(v: Optional[np.ndarray]) -> Optional[np.ndarray]:
    return None if v is None else np.array(v, dtype=float)


def _valid(*fields) -> bool:
    return all(f is not None for f in fields)


@dataclass
class Kinematics:
    """
    Kinematics of a frame B inside a frame A

    All vectors are expressed in A. A field set to None is invalid
    (unknown) and propagates as invalid through composition.

    Attributes:
        position: Origin of B in A (3)
        orientation: Rotation matrix from B to A (3x3)
        lin_vel: Linear velocity of the origin of B (3)
        ang_vel: Angular velocity of B (3)
        lin_acc: Linear acceleration of the origin of B (3)
        ang_acc: Angular acceleration of B (3)
    """
    position: Optional[np.ndarray] = None
    orientation: Optional[np.ndarray] = None
    lin_vel: Optional[np.ndarray] = None
    ang_vel: Optional[np.ndarray] = None
    lin_acc: Optional[np.ndarray] = None
    ang_acc: Optional[np.ndarray] = None

    @classmethod
    def zero(cls, flags: KinematicsFlags = KinematicsFlags.ALL) -> 'Kinematics':
        """Identity pose with zero velocities / accelerations on the requested fields"""
        return cls(
            position=np.zeros(3) if KinematicsFlags.POSITION in flags else None,
            orientation=np.eye(3) if KinematicsFlags.ORIENTATION in flags else None,
            lin_vel=np.zeros(3) if KinematicsFlags.LIN_VEL in flags else None,
            ang_vel=np.zeros(3) if KinematicsFlags.ANG_VEL in flags else None,
            lin_acc=np.zeros(3) if KinematicsFlags.LIN_ACC in flags else None,
            ang_acc=np.zeros(3) if KinematicsFlags.ANG_ACC in flags else None,
        )

    @classmethod
    def from_transform(
        cls,
        T: np.ndarray,
        velocity: Optional[np.ndarray] = None,
        acceleration: Optional[np.ndarray] = None
    ) -> 'Kinematics':
        """
        Build kinematics from a homogeneous transform and spatial vectors

        Args:
            T: 4x4 homogeneous transform of B in A
            velocity: 6D velocity [linear, angular] expressed in A (optional)
            acceleration: 6D acceleration [linear, angular] expressed in A (optional)

        Returns:
            Kinematics record
        """
        kine = cls(position=np.array(T[:3, 3], dtype=float),
                   orientation=np.array(T[:3, :3], dtype=float))
        if velocity is not None:
            kine.lin_vel = np.array(velocity[:3], dtype=float)
            kine.ang_vel = np.array(velocity[3:6], dtype=float)
        if acceleration is not None:
            kine.lin_acc = np.array(acceleration[:3], dtype=float)
            kine.ang_acc = np.array(acceleration[3:6], dtype=float)
        return kine

    @property
    def flags(self) -> KinematicsFlags:
        """Valid fields of the record"""
        flags = KinematicsFlags(0)
        for flag, value in (
            (KinematicsFlags.POSITION, self.position),
            (KinematicsFlags.ORIENTATION, self.orientation),
            (KinematicsFlags.LIN_VEL, self.lin_vel),
            (KinematicsFlags.ANG_VEL, self.ang_vel),
            (KinematicsFlags.LIN_ACC, self.lin_acc),
            (KinematicsFlags.ANG_ACC, self.ang_acc),
        ):
            if value is not None:
                flags |= flag
        return flags

    def copy(self) -> 'Kinematics':
        return Kinematics(
            position=_copy(self.position),
            orientation=_copy(self.orientation),
            lin_vel=_copy(self.lin_vel),
            ang_vel=_copy(self.ang_vel),
            lin_acc=_copy(self.lin_acc),
            ang_acc=_copy(self.ang_acc),
        )

    def is_finite(self) -> bool:
        """True when every valid field is finite"""
        return all(
            np.all(np.isfinite(v))
            for v in (self.position, self.orientation, self.lin_vel,
                      self.ang_vel, self.lin_acc, self.ang_acc)
            if v is not None
        )

    def to_transform(self) -> np.ndarray:
        """4x4 homogeneous transform, requires a valid pose"""
        if not _valid(self.position, self.orientation):
            raise ValueError("Kinematics pose is not valid")
        T = np.eye(4)
        T[:3, :3] = self.orientation
        T[:3, 3] = self.position
        return T

    def velocity_vector(self) -> np.ndarray:
        """6D velocity [linear, angular], invalid fields read as zero"""
        lin = self.lin_vel if self.lin_vel is not None else np.zeros(3)
        ang = self.ang_vel if self.ang_vel is not None else np.zeros(3)
        return np.concatenate([lin, ang])

    def acceleration_vector(self) -> np.ndarray:
        """6D acceleration [linear, angular], invalid fields read as zero"""
        lin = self.lin_acc if self.lin_acc is not None else np.zeros(3)
        ang = self.ang_acc if self.ang_acc is not None else np.zeros(3)
        return np.concatenate([lin, ang])

    def __mul__(self, other: 'Kinematics') -> 'Kinematics':
        """
        Compose kinematics

        If self is B in A and other is C in B, the result is C in A.
        """
        R = self.orientation
        result = Kinematics()

        if _valid(R, other.orientation):
            result.orientation = R @ other.orientation

        R_p = R @ other.position if _valid(R, other.position) else None
        R_v = R @ other.lin_vel if _valid(R, other.lin_vel) else None
        R_w = R @ other.ang_vel if _valid(R, other.ang_vel) else None

        if _valid(self.position, R_p):
            result.position = self.position + R_p

        if _valid(self.ang_vel, R_w):
            result.ang_vel = self.ang_vel + R_w

        if _valid(self.lin_vel, self.ang_vel, R_p, R_v):
            result.lin_vel = self.lin_vel + np.cross(self.ang_vel, R_p) + R_v

        if _valid(self.ang_acc, self.ang_vel, R_w, other.ang_acc):
            result.ang_acc = self.ang_acc + np.cross(self.ang_vel, R_w) + R @ other.ang_acc

        if _valid(self.lin_acc, self.ang_acc, self.ang_vel, R_p, R_v, other.lin_acc):
            w = self.ang_vel
            result.lin_acc = (
                self.lin_acc
                + np.cross(self.ang_acc, R_p)
                + np.cross(w, np.cross(w, R_p))
                + 2.0 * np.cross(w, R_v)
                + R @ other.lin_acc
            )

        return result

    def inverse(self) -> 'Kinematics':
        """If self is B in A, return A in B"""
        result = Kinematics()
        if self.orientation is None:
            return result

        Rt = self.orientation.T
        p, v, w = self.position, self.lin_vel, self.ang_vel
        a, dw = self.lin_acc, self.ang_acc

        result.orientation = Rt.copy()
        if p is not None:
            result.position = -Rt @ p
        if w is not None:
            result.ang_vel = -Rt @ w
        if _valid(p, v, w):
            result.lin_vel = Rt @ (np.cross(w, p) - v)
        if dw is not None:
            result.ang_acc = -Rt @ dw
        if _valid(p, v, w, a, dw):
            result.lin_acc = Rt @ (
                np.cross(dw, p) - np.cross(w, np.cross(w, p)) + 2.0 * np.cross(w, v) - a
            )
        return result

    def pose(self) -> 'Kinematics':
        """Copy restricted to position and orientation"""
        return Kinematics(position=_copy(self.position), orientation=_copy(self.orientation))


def transport_wrench(kine: Kinematics, wrench: np.ndarray) -> np.ndarray:
    """
    Express a wrench given in frame B inside frame A

    Args:
        kine: Pose of B in A
        wrench: 6D wrench [force, torque] expressed in B, torque about B's origin

    Returns:
        6D wrench expressed in A, torque about A's origin
    """
    force = kine.orientation @ wrench[:3]
    torque = kine.orientation @ wrench[3:6] + np.cross(kine.position, force)
    return np.concatenate([force, torque])
