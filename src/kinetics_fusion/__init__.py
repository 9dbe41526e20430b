"""
Kinetics Fusion
Floating-base estimation for legged robots: contact management, fault
detection and recovery around a primary kinetics estimator

Author: Kinetics Fusion contributors
"""

__version__ = "0.1.0"
__author__ = "Kinetics Fusion contributors"

from .exceptions import (
    ConfigurationError,
    ContactCapacityError,
    EmptyHistoryError,
    EstimatorContractError,
    FusionError,
)
from .utils import Kinematics, KinematicsFlags
from .contacts import ContactsManager, ContactDetector, OdometryType, RestKinematicsResolver
from .estimation import (
    ContactEKF,
    FusionOutput,
    FusionState,
    ImuMeasurement,
    CenterOfMass,
    KineticsEstimator,
    KineticsFusion,
    TickInputs,
)
from .config import FusionConfig, load_config

__all__ = [
    'ConfigurationError',
    'ContactCapacityError',
    'EmptyHistoryError',
    'EstimatorContractError',
    'FusionError',
    'Kinematics',
    'KinematicsFlags',
    'ContactsManager',
    'ContactDetector',
    'OdometryType',
    'RestKinematicsResolver',
    'ContactEKF',
    'FusionOutput',
    'FusionState',
    'ImuMeasurement',
    'CenterOfMass',
    'KineticsEstimator',
    'KineticsFusion',
    'TickInputs',
    'FusionConfig',
    'load_config',
]
