#!/usr/bin/env python3
"""
Fusion configuration
Dataclass configuration of the pipeline and its YAML loader

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
import yaml
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, List, Optional, Union

from .contacts.detection import (
    ContactsDetection,
    DetectionPolicy,
    SensorsDetection,
    SolverDetection,
    SurfacesDetection,
    ThresholdDetection,
    resolve_thresholds,
)
from .contacts.rest_kinematics import ContactCovariances, ContactStiffness, OdometryType
from .estimation.backup_estimator import BackupEstimatorConfig
from .estimation.state_estimator import EstimatorConfig
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ContactsConfig:
    """Contact detection configuration"""
    detection: str = "Surfaces"

    # Surface name -> force sensor name
    surfaces: Dict[str, str] = field(default_factory=lambda: {
        'LeftFootCenter': 'LeftFootForceSensor',
        'RightFootCenter': 'RightFootForceSensor',
    })

    # Force sensors of the robot (Sensors and Threshold detection)
    force_sensors: List[str] = field(default_factory=list)

    # Sensors measuring external wrenches, never contacts (Sensors detection)
    force_sensors_as_input: List[str] = field(default_factory=list)

    # Schmitt trigger thresholds, absolute (N) or as a proportion of the weight
    lower_threshold: Optional[float] = None
    upper_threshold: Optional[float] = None
    lower_threshold_prop: Optional[float] = 0.11
    upper_threshold_prop: Optional[float] = 0.17

    # Single threshold of the Threshold detection (N)
    threshold: Optional[float] = None

    # Sensors whose measurements are not used at startup
    sensors_disabled_init: List[str] = field(default_factory=list)

    @property
    def known_sensors(self) -> List[str]:
        """Declared force sensors, the surface sensors when none are declared"""
        if self.force_sensors:
            return list(self.force_sensors)
        return list(dict.fromkeys(self.surfaces.values()))


@dataclass
class SensorCovariances:
    """Measurement variances"""
    accel_variance: float = 1e-4
    gyro_variance: float = 1e-6
    force_variance: float = 1e-2
    torque_variance: float = 1e-3

    def accel_covariance(self) -> np.ndarray:
        return np.eye(3) * self.accel_variance

    def gyro_covariance(self) -> np.ndarray:
        return np.eye(3) * self.gyro_variance

    def wrench_covariance(self) -> np.ndarray:
        return np.diag(np.concatenate([
            np.full(3, self.force_variance),
            np.full(3, self.torque_variance),
        ]))


@dataclass
class FusionConfig:
    """Kinetics fusion configuration"""
    # Control period (s)
    dt: float = 0.005

    # Robot
    mass: float = 40.0
    gravity: float = 9.81

    # Number of contact slots of the estimator
    max_contacts: int = 3

    # None, 6D or Flat
    odometry_type: str = "6D"
    ground_height: float = 0.0

    # Duration of the recovery after a fault (s)
    recovery_window: float = 1.5

    # Duration of the history replayed on a fault (s), recovery_window if unset
    backup_interval: Optional[float] = None

    contacts: ContactsConfig = field(default_factory=ContactsConfig)
    stiffness: ContactStiffness = field(default_factory=ContactStiffness)
    contact_covariances: ContactCovariances = field(default_factory=ContactCovariances)
    sensor_covariances: SensorCovariances = field(default_factory=SensorCovariances)
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    backup: BackupEstimatorConfig = field(default_factory=BackupEstimatorConfig)

    def __post_init__(self):
        self.validate()
        # The estimators run at the pipeline period
        self.estimator.dt = self.dt
        self.estimator.gravity = self.gravity
        self.estimator.mass = self.mass

    @property
    def weight(self) -> float:
        return self.mass * self.gravity

    @property
    def odometry(self) -> OdometryType:
        return OdometryType.from_string(self.odometry_type)

    @property
    def detection(self) -> ContactsDetection:
        return ContactsDetection.from_string(self.contacts.detection)

    @property
    def recovery_ticks(self) -> int:
        return max(1, int(round(self.recovery_window / self.dt)))

    @property
    def history_capacity(self) -> int:
        interval = self.recovery_window if self.backup_interval is None else self.backup_interval
        return max(1, int(round(interval / self.dt)))

    def validate(self):
        """Check the configuration, raises ConfigurationError"""
        if self.dt <= 0.0:
            raise ConfigurationError(f"dt must be positive, got {self.dt}")
        if self.mass <= 0.0:
            raise ConfigurationError(f"mass must be positive, got {self.mass}")
        if self.max_contacts < 1:
            raise ConfigurationError(f"max_contacts must be at least 1, got {self.max_contacts}")
        if self.recovery_window <= 0.0:
            raise ConfigurationError(
                f"recovery_window must be positive, got {self.recovery_window}")
        if self.backup_interval is not None and self.backup_interval <= 0.0:
            raise ConfigurationError(
                f"backup_interval must be positive, got {self.backup_interval}")

        OdometryType.from_string(self.odometry_type)
        ContactsDetection.from_string(self.contacts.detection)

        known = set(self.contacts.known_sensors)
        uses_surfaces = self.detection in (ContactsDetection.SURFACES, ContactsDetection.SOLVER)
        if uses_surfaces and self.contacts.force_sensors:
            for surface, sensor in self.contacts.surfaces.items():
                if sensor not in known:
                    raise ConfigurationError(
                        f"Surface '{surface}' uses sensor '{sensor}' which is not in force_sensors")
        for sensor in self.contacts.sensors_disabled_init:
            if sensor not in known:
                raise ConfigurationError(
                    f"Sensor '{sensor}' disabled at startup is not a known force sensor")

        self.detection_policy()

    def detection_policy(self) -> DetectionPolicy:
        """Build the contact detection policy"""
        contacts = self.contacts
        detection = self.detection

        if detection is ContactsDetection.SOLVER:
            return SolverDetection(surfaces=dict(contacts.surfaces))

        if detection is ContactsDetection.THRESHOLD:
            if not contacts.force_sensors:
                raise ConfigurationError("Threshold detection requires force_sensors")
            if contacts.threshold is None:
                raise ConfigurationError("Threshold detection requires a threshold")
            return ThresholdDetection(
                force_sensors=list(contacts.force_sensors),
                threshold=contacts.threshold,
            )

        lower, upper = resolve_thresholds(
            contacts.lower_threshold,
            contacts.upper_threshold,
            contacts.lower_threshold_prop,
            contacts.upper_threshold_prop,
            self.weight,
        )

        if detection is ContactsDetection.SURFACES:
            if not contacts.surfaces:
                raise ConfigurationError("Surfaces detection requires at least one surface")
            return SurfacesDetection(
                surfaces=dict(contacts.surfaces),
                lower_threshold=lower,
                upper_threshold=upper,
            )

        if not contacts.force_sensors:
            raise ConfigurationError("Sensors detection requires force_sensors")
        unknown = set(contacts.force_sensors_as_input) - set(contacts.force_sensors)
        if unknown:
            raise ConfigurationError(
                f"Sensors {sorted(unknown)} used as input are not in force_sensors")
        return SensorsDetection(
            force_sensors=list(contacts.force_sensors),
            force_sensors_as_input=list(contacts.force_sensors_as_input),
            lower_threshold=lower,
            upper_threshold=upper,
        )

    @classmethod
    def from_dict(cls, cfg: dict) -> 'FusionConfig':
        """
        Build configuration from a nested dictionary

        Args:
            cfg: Dictionary with the field names of FusionConfig, nested
                sections for contacts, stiffness, contact_covariances,
                sensor_covariances, estimator and backup

        Returns:
            Validated configuration
        """
        cfg = dict(cfg or {})
        sections = {
            'contacts': ContactsConfig,
            'stiffness': ContactStiffness,
            'contact_covariances': ContactCovariances,
            'sensor_covariances': SensorCovariances,
            'estimator': EstimatorConfig,
            'backup': BackupEstimatorConfig,
        }
        for name, section_cls in sections.items():
            if name in cfg:
                cfg[name] = _build(section_cls, cfg[name], name)
        return _build(cls, cfg, 'fusion')


def _build(cls, values: Optional[dict], section: str):
    """Instantiate a configuration dataclass, rejecting unknown keys"""
    values = values or {}
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{section}' must be a mapping, got {type(values).__name__}")

    names = {f.name for f in fields(cls)}
    unknown = set(values) - names
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{section}': {sorted(unknown)}")

    return cls(**values)


def load_config(config_path: Union[str, Path]) -> FusionConfig:
    """Load configuration from YAML file"""
    with open(config_path, 'r') as f:
        cfg = yaml.safe_load(f)

    if cfg is None:
        cfg = {}
    # Allow the configuration under a top-level key
    cfg = cfg.get('kinetics_fusion', cfg)

    config = FusionConfig.from_dict(cfg)
    logger.info("Loaded fusion configuration from %s", config_path)
    return config
