"""Floating-base estimation: estimators, state machine and orchestration"""

# Estimators first, the orchestrator depends on the configuration module
# which depends on them.
from .measurements import CenterOfMass, ImuMeasurement, TickInputs
from .kinetics_estimator import ContactEstimate, KineticsEstimator, PrimaryEstimatorAdapter
from .state_estimator import ContactEKF, EstimatorConfig
from .backup_estimator import BackupEstimator, BackupEstimatorConfig
from .history_buffer import HistoryBuffer
from .fusion_state import FusionState, FusionStateMachine, FusionStep
from .events import (
    ContactAdded,
    ContactRemoved,
    ContactSensorToggled,
    FaultEntered,
    RecoveryCompleted,
)
from .kinetics_fusion import FusionOutput, KineticsFusion

__all__ = [
    'CenterOfMass',
    'ImuMeasurement',
    'TickInputs',
    'ContactEstimate',
    'KineticsEstimator',
    'PrimaryEstimatorAdapter',
    'ContactEKF',
    'EstimatorConfig',
    'BackupEstimator',
    'BackupEstimatorConfig',
    'HistoryBuffer',
    'FusionState',
    'FusionStateMachine',
    'FusionStep',
    'ContactAdded',
    'ContactRemoved',
    'ContactSensorToggled',
    'FaultEntered',
    'RecoveryCompleted',
    'FusionOutput',
    'KineticsFusion',
]
