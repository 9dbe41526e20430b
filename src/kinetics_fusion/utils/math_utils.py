#!/usr/bin/env python3
"""
Rotation and tangent-space helpers for floating-base estimation
Quaternions are stored scalar first [w, x, y, z]
"""

import numpy as np
from typing import Callable
from scipy.spatial.transform import Rotation


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Cross-product matrix

    Args:
        v: 3D vector

    Returns:
        3x3 matrix S with S @ u = v x u
    """
    x, y, z = v
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ])


def quaternion_to_rotation_matrix(q: np.ndarray) -> np.ndarray:
    """Rotation matrix of a (not necessarily unit) quaternion [w, x, y, z]"""
    w, x, y, z = q
    return Rotation.from_quat([x, y, z, w]).as_matrix()


def rotation_matrix_to_quaternion(R: np.ndarray) -> np.ndarray:
    """Unit quaternion [w, x, y, z] with non-negative scalar part"""
    x, y, z, w = Rotation.from_matrix(R).as_quat()
    q = np.array([w, x, y, z])
    return -q if w < 0.0 else q


def rotation_vector_to_matrix(rotation_vector: np.ndarray) -> np.ndarray:
    """
    Exponential map from so(3) to SO(3)

    Args:
        rotation_vector: Rotation axis scaled by the angle (radians)

    Returns:
        3x3 rotation matrix
    """
    return Rotation.from_rotvec(np.asarray(rotation_vector, dtype=float)).as_matrix()


def rotation_matrix_to_rotation_vector(R: np.ndarray) -> np.ndarray:
    """Logarithm map from SO(3) to so(3), angle in [0, pi]"""
    return Rotation.from_matrix(R).as_rotvec()


def axis_angle_to_rotation_matrix(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation of `angle` radians about the unit vector `axis`"""
    return rotation_vector_to_matrix(np.asarray(axis, dtype=float) * angle)


def orthonormalize(R: np.ndarray) -> np.ndarray:
    """Project a nearly orthogonal matrix back onto SO(3)"""
    U, _, Vt = np.linalg.svd(R)
    if np.linalg.det(U @ Vt) < 0:
        U[:, -1] = -U[:, -1]
    return U @ Vt


def compute_jacobian_numerical(
    func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    eps=1e-6
) -> np.ndarray:
    """
    Forward-difference Jacobian

    Args:
        func: Function mapping x -> y
        x: Linearization point
        eps: Step, scalar or one entry per input dimension

    Returns:
        Jacobian matrix df/dx of shape (len(y), len(x))
    """
    x = np.asarray(x, dtype=float)
    f0 = np.asarray(func(x), dtype=float)
    steps = np.broadcast_to(np.asarray(eps, dtype=float), x.shape)

    columns = []
    for i, h in enumerate(steps):
        dx = np.zeros_like(x)
        dx[i] = h
        columns.append((np.asarray(func(x + dx), dtype=float) - f0) / h)
    return np.column_stack(columns)
