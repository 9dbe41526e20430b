"""Contact management: registry, detection and rest kinematics"""

from .contact import Contact
from .contacts_manager import ContactsManager
from .detection import (
    ContactDetector,
    ContactsDetection,
    ContactUpdate,
    SchmittTrigger,
    SensorsDetection,
    SolverDetection,
    SurfacesDetection,
    ThresholdDetection,
    resolve_thresholds,
)
from .rest_kinematics import (
    ContactCovariances,
    ContactStiffness,
    OdometryType,
    RestKinematicsResolver,
)

__all__ = [
    'Contact',
    'ContactsManager',
    'ContactDetector',
    'ContactsDetection',
    'ContactUpdate',
    'SchmittTrigger',
    'SensorsDetection',
    'SolverDetection',
    'SurfacesDetection',
    'ThresholdDetection',
    'resolve_thresholds',
    'ContactCovariances',
    'ContactStiffness',
    'OdometryType',
    'RestKinematicsResolver',
]
