#!/usr/bin/env python3
"""
Fusion State Machine
Decides at each tick whether the primary estimate can be published, and
paces the recovery after a fault

Author: Kinetics Fusion contributors
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .history_buffer import HistoryBuffer
from ..utils.kinematics import Kinematics

logger = logging.getLogger(__name__)


class FusionState(Enum):
    """Fusion states"""
    NOMINAL = "Nominal"
    FAULT_DETECTED = "FaultDetected"
    RECOVERING = "Recovering"


@dataclass
class FusionStep:
    """
    Outcome of one state machine step

    Attributes:
        tick: Index of the tick, starting at 0
        state: State of the tick
        recovery_completed: Last tick of the recovery, the primary
            estimator must be resynchronized to the published estimate
        early_fault: Fault raised before the history was full
        repeated_fault: Fault raised within one history length of the previous one
    """
    tick: int
    state: FusionState
    recovery_completed: bool = False
    early_fault: bool = False
    repeated_fault: bool = False


class FusionStateMachine:
    """
    Nominal -> FaultDetected -> Recovering -> Nominal

    A fault preempts any state. FaultDetected lasts exactly one tick. With
    a recovery window of N ticks the machine then spends exactly N ticks in
    Recovering, the last of which completes the recovery.

    The machine owns the history of published floating-base kinematics.
    """

    def __init__(self, recovery_ticks: int, history_capacity: int):
        """
        Initialize state machine

        Args:
            recovery_ticks: Number of Recovering ticks after a fault
            history_capacity: Number of published estimates kept
        """
        self.recovery_ticks = max(1, int(recovery_ticks))
        self.history = HistoryBuffer(history_capacity)

        self.state = FusionState.NOMINAL
        self.counter = 0
        self.tick = -1
        self.last_fault_tick: Optional[int] = None

        self._recovery_done = False

    def step(self, fault: bool) -> FusionStep:
        """
        Advance one tick

        Args:
            fault: Fault flag of the primary estimator after its update

        Returns:
            State of the tick and recovery completion flag
        """
        self.tick += 1

        if fault:
            early, repeated = self._on_fault()
            self.state = FusionState.FAULT_DETECTED
            self.counter = 1
            self._recovery_done = False
            return FusionStep(self.tick, self.state, early_fault=early, repeated_fault=repeated)

        if self.state is FusionState.FAULT_DETECTED:
            self.state = FusionState.RECOVERING
        elif self.state is FusionState.RECOVERING and self._recovery_done:
            self.state = FusionState.NOMINAL
            self._recovery_done = False

        completed = False
        if self.state is FusionState.RECOVERING:
            if self.counter >= self.recovery_ticks:
                completed = True
                self._recovery_done = True
            else:
                self.counter += 1

        return FusionStep(self.tick, self.state, completed)

    def record(self, kinematics: Kinematics):
        """Append the published estimate of the tick to the history"""
        self.history.append(kinematics)

    def _on_fault(self) -> Tuple[bool, bool]:
        capacity = self.history.capacity
        early = not self.history.is_full
        repeated = self.last_fault_tick is not None and self.tick - self.last_fault_tick < capacity

        if early:
            logger.warning(
                "Fault detected at tick %d, before the history of %d ticks is full. "
                "The reconstruction uses the last %d ticks only",
                self.tick, capacity, len(self.history))

        if repeated:
            logger.warning(
                "Fault detected %d ticks after the previous one (history of %d ticks). "
                "The reconstruction starts from estimates of the previous recovery",
                self.tick - self.last_fault_tick, capacity)

        self.last_fault_tick = self.tick
        return early, repeated

    @property
    def state_name(self) -> str:
        return self.state.value

    def reset(self):
        self.state = FusionState.NOMINAL
        self.counter = 0
        self.tick = -1
        self.last_fault_tick = None
        self._recovery_done = False
        self.history.clear()
