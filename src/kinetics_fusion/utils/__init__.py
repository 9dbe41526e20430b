"""Math and kinematics utilities"""

from .kinematics import Kinematics, KinematicsFlags, transport_wrench
from .filters import ComplementaryFilter
from .math_utils import (
    skew_symmetric,
    quaternion_to_rotation_matrix,
    rotation_matrix_to_quaternion,
    rotation_vector_to_matrix,
    rotation_matrix_to_rotation_vector,
    axis_angle_to_rotation_matrix,
    orthonormalize,
    compute_jacobian_numerical,
)

__all__ = [
    'Kinematics',
    'KinematicsFlags',
    'transport_wrench',
    'ComplementaryFilter',
    'skew_symmetric',
    'quaternion_to_rotation_matrix',
    'rotation_matrix_to_quaternion',
    'rotation_vector_to_matrix',
    'rotation_matrix_to_rotation_vector',
    'axis_angle_to_rotation_matrix',
    'orthonormalize',
    'compute_jacobian_numerical',
]
