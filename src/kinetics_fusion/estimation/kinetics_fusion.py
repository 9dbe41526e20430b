#!/usr/bin/env python3
"""
Kinetics Fusion
Per-tick orchestration of contact management, primary and backup
estimators, and the fault / recovery state machine

Author: Kinetics Fusion contributors
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .backup_estimator import BackupEstimator
from .events import (
    ContactAdded,
    ContactRemoved,
    ContactSensorToggled,
    FaultEntered,
    FusionEvent,
    RecoveryCompleted,
)
from .fusion_state import FusionState, FusionStateMachine, FusionStep
from .kinetics_estimator import ContactEstimate, KineticsEstimator, PrimaryEstimatorAdapter
from .measurements import CenterOfMass, TickInputs
from .state_estimator import ContactEKF
from ..config import FusionConfig
from ..contacts.contact import Contact
from ..contacts.contacts_manager import ContactsManager
from ..contacts.detection import ContactDetector
from ..contacts.rest_kinematics import OdometryType, RestKinematicsResolver
from ..exceptions import EmptyHistoryError, EstimatorContractError
from ..utils.kinematics import Kinematics, KinematicsFlags, transport_wrench

logger = logging.getLogger(__name__)


@dataclass
class FusionOutput:
    """
    Result of one tick

    Attributes:
        tick: Index of the tick
        state: Fusion state name
        kinematics: Floating base in the world (pose, velocity, acceleration)
        contacts: Contact name -> estimated contact state, for set contacts
        events: Events raised during the tick
    """
    tick: int
    state: str
    kinematics: Kinematics
    contacts: Dict[str, ContactEstimate] = field(default_factory=dict)
    events: List[FusionEvent] = field(default_factory=list)

    def as_log_entries(self) -> Dict[str, object]:
        """Flat name -> value mapping for an external logger"""
        kine = self.kinematics
        entries = {
            'fusion_tick': self.tick,
            'fusion_state': self.state,
            'fb_position': kine.position,
            'fb_orientation': kine.orientation,
            'fb_lin_vel': kine.lin_vel,
            'fb_ang_vel': kine.ang_vel,
            'fb_lin_acc': kine.lin_acc,
            'fb_ang_acc': kine.ang_acc,
        }
        for name, estimate in self.contacts.items():
            prefix = f'contact_{name}'
            entries[f'{prefix}_position'] = estimate.position
            entries[f'{prefix}_orientation'] = estimate.orientation
            entries[f'{prefix}_force'] = estimate.force
            entries[f'{prefix}_torque'] = estimate.torque
            entries[f'{prefix}_position_cov'] = estimate.position_covariance
            entries[f'{prefix}_orientation_cov'] = estimate.orientation_covariance
            entries[f'{prefix}_force_cov'] = estimate.force_covariance
            entries[f'{prefix}_torque_cov'] = estimate.torque_covariance
        return entries


class KineticsFusion:
    """
    Floating-base estimation pipeline

    Each call to `run` performs, in order:
    1. backup estimation on the tick's IMU and contact kinematics
    2. center of mass input
    3. contact detection and contact inputs to the primary estimator
    4. additional wrench and IMU inputs
    5. primary estimator update
    6. state machine step: publication, history, recovery side effects
    """

    def __init__(
        self,
        config: FusionConfig = None,
        estimator: Optional[KineticsEstimator] = None
    ):
        """
        Initialize pipeline

        Args:
            config: Pipeline configuration
            estimator: Primary estimator, a ContactEKF if None
        """
        self.config = config or FusionConfig()
        cfg = self.config

        self.odometry_type = cfg.odometry
        self.estimator = PrimaryEstimatorAdapter(
            estimator if estimator is not None else ContactEKF(cfg.estimator),
            cfg.max_contacts
        )

        self.contacts = ContactsManager(
            max_contacts=cfg.max_contacts,
            known_sensors=cfg.contacts.known_sensors,
            disabled_sensors=cfg.contacts.sensors_disabled_init,
        )
        self.detector = ContactDetector(
            cfg.detection_policy(),
            self.contacts,
            on_new=self._on_new_contact,
            on_maintained=self._on_maintained_contact,
            on_removed=self._on_removed_contact,
        )
        self.resolver = RestKinematicsResolver(
            stiffness=cfg.stiffness,
            odometry_type=self.odometry_type,
            covariances=cfg.contact_covariances,
            ground_height=cfg.ground_height,
        )
        self.backup = BackupEstimator(
            config=cfg.backup,
            dt=cfg.dt,
            gravity=cfg.gravity,
            odometry_type=self.odometry_type,
            history_capacity=cfg.history_capacity,
            ground_height=cfg.ground_height,
        )
        self.fsm = FusionStateMachine(cfg.recovery_ticks, cfg.history_capacity)

        self._subscribers: List[Callable[[FusionOutput], None]] = []
        self._pending_events: List[FusionEvent] = []
        self._events: List[FusionEvent] = []
        self._published: Optional[Kinematics] = None

        # Valid during `run` only
        self._inputs: Optional[TickInputs] = None
        self._init_covariance: Optional[np.ndarray] = None

        logger.info(
            "Kinetics fusion initialized: detection=%s odometry=%s recovery=%d ticks history=%d ticks",
            self.detector.detection.value, self.odometry_type.value,
            self.fsm.recovery_ticks, self.fsm.history.capacity)

    # ------------------------------------------------------------------
    # Runtime controls
    # ------------------------------------------------------------------

    @property
    def state(self) -> FusionState:
        return self.fsm.state

    @property
    def tick(self) -> int:
        return self.fsm.tick

    def subscribe(self, callback: Callable[[FusionOutput], None]):
        """Call `callback` with the output of every tick"""
        self._subscribers.append(callback)

    def set_odometry_type(self, name: str):
        odometry_type = OdometryType.from_string(name)
        if odometry_type is self.odometry_type:
            return
        logger.info("Odometry type changed from %s to %s", self.odometry_type.value, odometry_type.value)
        self.odometry_type = odometry_type
        self.resolver.odometry_type = odometry_type
        self.backup.set_odometry_type(odometry_type)

    def set_contact_sensor_enabled(self, sensor_name: str, enabled: bool):
        """Use or ignore a force sensor from the next tick on"""
        affected = self.contacts.set_sensor_enabled(sensor_name, enabled)
        logger.info(
            "Force sensor '%s' %s (contacts %s)",
            sensor_name, "enabled" if enabled else "disabled", [c.name for c in affected])
        self._pending_events.append(ContactSensorToggled(self.fsm.tick + 1, sensor_name, enabled))

    def inject_fault(self):
        """Raise the fault flag of the primary estimator"""
        logger.info("Fault injected in the primary estimator")
        self.estimator.inject_fault()

    def solver_add_contact(self, name: str):
        self.detector.solver_add_contact(name)

    def solver_remove_contact(self, name: str):
        self.detector.solver_remove_contact(name)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run(self, inputs: TickInputs) -> FusionOutput:
        """
        Run one tick of the pipeline

        Args:
            inputs: Measurements of the tick

        Returns:
            Published floating-base estimate and telemetry
        """
        self._inputs = inputs
        self._events = self._pending_events
        self._pending_events = []
        tick = self.fsm.tick + 1

        try:
            # Backup estimation on the contacts set at the previous tick
            set_contacts = {}
            for contact in self.contacts.set_contacts():
                self._refresh_contact(contact, inputs)
                set_contacts[contact.name] = contact.fb_contact_kinematics
            imu = inputs.imus[0] if inputs.imus else None
            self.backup.run(imu, set_contacts)

            com = inputs.com
            self.estimator.set_center_of_mass(com.position, com.velocity, com.acceleration)

            self._init_covariance = self.resolver.initial_covariance(
                self.estimator.number_of_set_contacts)
            self.detector.classify(inputs.wrenches, inputs.surface_contacts, inputs.detection_signals)

            force, torque = self._additional_wrench(inputs)
            self.estimator.set_additional_wrench(force, torque)
            self._set_imus(inputs)

            self.estimator.update()

            step = self.fsm.step(self.estimator.fault_detected)
            published = self._publish(step, inputs)
            self.fsm.record(published.copy())
            self._published = published

            output = FusionOutput(
                tick=tick,
                state=step.state.value,
                kinematics=published.copy(),
                contacts=self._contact_estimates(),
                events=self._events,
            )
        finally:
            self._inputs = None
            self._init_covariance = None

        logger.debug("Tick %d: %s", tick, output.state)
        for callback in self._subscribers:
            callback(output)
        return output

    def _publish(self, step: FusionStep, inputs: TickInputs) -> Kinematics:
        """Floating-base estimate of the tick, with the recovery side effects"""
        if step.state is FusionState.NOMINAL:
            return self.estimator.get_global_kinematics_of(Kinematics.zero(KinematicsFlags.ALL))

        if step.state is FusionState.FAULT_DETECTED:
            self._events.append(FaultEntered(step.tick, step.early_fault, step.repeated_fault))
            try:
                published = self.backup.reconstruct(self.fsm.history)
            except EmptyHistoryError:
                # Fault on the first tick
                published = self.backup.last_estimate
            self._with_finite_difference_acceleration(published)
            self._reset_primary(published, inputs.com)
            return published

        published = self.backup.apply_last_transformation(self._published)
        self._with_finite_difference_acceleration(published)
        if step.recovery_completed:
            self.estimator.set_world_centroid_kinematics(
                self._world_centroid(published, inputs.com), reset_covariance=False)
            self._resync_contacts(reset_covariance=False)
            self._events.append(RecoveryCompleted(step.tick))
            logger.info("Recovery completed at tick %d", step.tick)
        return published

    def _reset_primary(self, published: Kinematics, com: CenterOfMass):
        """Reset the primary estimator on the reconstructed floating base"""
        self.estimator.set_world_centroid_kinematics(
            self._world_centroid(published, com), reset_covariance=True)
        self.estimator.set_state_unmodeled_wrench(np.zeros(6), reset_covariance=True)
        for index in range(max(1, len(self._inputs.imus))):
            self.estimator.set_gyro_bias(np.zeros(3), index, reset_covariance=True)
        self._resync_contacts(reset_covariance=True)
        self.estimator.clear_fault()

    def _resync_contacts(self, reset_covariance: bool):
        for contact in self.contacts.set_contacts():
            world = self.estimator.get_global_kinematics_of(contact.fb_contact_kinematics)
            rest = self.resolver.resolve(
                contact, world, self._inputs.reference_contact_kinematics.get(contact.name))
            contact.rest_kinematics = rest
            self.estimator.set_state_contact(contact.id, rest, contact.wrench, reset_covariance)

    @staticmethod
    def _world_centroid(fb: Kinematics, com: CenterOfMass) -> Kinematics:
        """CoM position and velocity with the orientation and angular velocity of the base"""
        com_world = fb * com.as_kinematics()
        return Kinematics(
            position=com_world.position,
            orientation=np.array(fb.orientation, dtype=float),
            lin_vel=com_world.lin_vel,
            ang_vel=None if fb.ang_vel is None else np.array(fb.ang_vel, dtype=float),
        )

    def _with_finite_difference_acceleration(self, kine: Kinematics):
        previous = self._published
        if previous is None or previous.lin_vel is None or previous.ang_vel is None:
            kine.lin_acc = np.zeros(3)
            kine.ang_acc = np.zeros(3)
            return
        dt = self.config.dt
        kine.lin_acc = (kine.lin_vel - previous.lin_vel) / dt
        kine.ang_acc = (kine.ang_vel - previous.ang_vel) / dt

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def _refresh_contact(self, contact: Contact, inputs: TickInputs):
        """Contact frame in the floating base and wrench in the contact frame"""
        sensor_kine = inputs.sensor_kinematics.get(contact.sensor_name) \
            if contact.sensor_name is not None else None
        surface_kine = inputs.surface_kinematics.get(contact.surface_name) \
            if contact.sensor_attached_to_surface else None

        if surface_kine is not None:
            contact.fb_contact_kinematics = surface_kine
            if sensor_kine is not None:
                contact.contact_sensor_kinematics = surface_kine.pose().inverse() * sensor_kine.pose()
            else:
                contact.contact_sensor_kinematics = Kinematics.zero(KinematicsFlags.POSE)
        elif sensor_kine is not None:
            contact.fb_contact_kinematics = sensor_kine
            contact.contact_sensor_kinematics = Kinematics.zero(KinematicsFlags.POSE)
        else:
            raise EstimatorContractError(f"No kinematics given for contact '{contact.name}'")

        if contact.sensor_name is not None and contact.sensor_name in inputs.wrenches:
            wrench = np.asarray(inputs.wrenches[contact.sensor_name], dtype=float)
            contact.wrench = transport_wrench(contact.contact_sensor_kinematics, wrench)
        else:
            contact.wrench = np.zeros(6)
        contact.force_norm = float(np.linalg.norm(contact.wrench[:3]))

    def _update_contact(self, contact: Contact):
        measured = contact.uses_sensor and contact.sensor_name in self._inputs.wrenches
        if measured:
            self.estimator.update_contact(
                contact.id,
                contact.fb_contact_kinematics,
                contact.wrench,
                self.config.sensor_covariances.wrench_covariance(),
            )
        else:
            self.estimator.update_contact(contact.id, contact.fb_contact_kinematics)

    def _on_new_contact(self, contact: Contact):
        inputs = self._inputs
        self._refresh_contact(contact, inputs)

        world = self.estimator.get_global_kinematics_of(contact.fb_contact_kinematics)
        rest = self.resolver.resolve(
            contact, world, inputs.reference_contact_kinematics.get(contact.name))
        contact.rest_kinematics = rest

        stiffness = self.config.stiffness
        self.estimator.add_contact(
            contact.id,
            rest,
            self._init_covariance,
            self.resolver.process_covariance(),
            stiffness.lin_stiffness,
            stiffness.lin_damping,
            stiffness.ang_stiffness,
            stiffness.ang_damping,
        )
        self._update_contact(contact)

        self._events.append(ContactAdded(self.fsm.tick + 1, contact.name, contact.id))
        logger.info("Contact '%s' added with id %d", contact.name, contact.id)

    def _on_maintained_contact(self, contact: Contact):
        self._refresh_contact(contact, self._inputs)
        self._update_contact(contact)

    def _on_removed_contact(self, contact: Contact):
        if self.estimator.is_registered(contact.id):
            self.estimator.remove_contact(contact.id)
        self._events.append(ContactRemoved(self.fsm.tick + 1, contact.name, contact.id))
        logger.info("Contact '%s' removed, id %d released", contact.name, contact.id)

    def _additional_wrench(self, inputs: TickInputs):
        """
        Sum of the wrenches not explained by set contacts, floating-base frame

        Sensors of set contacts and disabled sensors are ignored.
        """
        force = np.zeros(3)
        torque = np.zeros(3)
        contact_sensors = {c.sensor_name for c in self.contacts.set_contacts()}

        for sensor, wrench in inputs.wrenches.items():
            if sensor in contact_sensors or not self.contacts.is_sensor_enabled(sensor):
                continue
            kine = inputs.sensor_kinematics.get(sensor)
            if kine is None:
                logger.debug("No kinematics for sensor '%s', wrench not used as input", sensor)
                continue
            fb_wrench = transport_wrench(kine, np.asarray(wrench, dtype=float))
            force += fb_wrench[:3]
            torque += fb_wrench[3:6]

        return force, torque

    def _set_imus(self, inputs: TickInputs):
        covariances = self.config.sensor_covariances
        for index, imu in enumerate(inputs.imus):
            self.estimator.set_imu(
                imu.accel,
                imu.gyro,
                imu.accel_cov if imu.accel_cov is not None else covariances.accel_covariance(),
                imu.gyro_cov if imu.gyro_cov is not None else covariances.gyro_covariance(),
                imu.imu_kinematics,
                index,
            )

    def _contact_estimates(self) -> Dict[str, ContactEstimate]:
        return {
            contact.name: self.estimator.get_contact_estimate(contact.id)
            for contact in self.contacts.set_contacts()
            if self.estimator.is_registered(contact.id)
        }
