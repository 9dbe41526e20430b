#!/usr/bin/env python3
"""
First-order complementary filter
Blends a measured signal with the integral of its measured derivative
"""

import logging
import numpy as np
from typing import Optional

logger = logging.getLogger(__name__)


class ComplementaryFilter:
    """
    Complementary filter on a vector signal

    estimate = b * (estimate + dt * xdot) + (1 - b) * x, with
    b = tau / (dt + tau). Large time constants trust the derivative,
    small ones trust the direct measurement.
    """

    def __init__(self, dt: float, time_constant: float, ndim: int = 3):
        """
        Initialize filter

        Args:
            dt: Sampling period (s)
            time_constant: Cut-off time constant (s)
            ndim: Signal dimension
        """
        if dt <= 0.0:
            raise ValueError(f"Sampling period must be positive, got {dt}")
        if time_constant < 0.0:
            raise ValueError(f"Time constant must be non-negative, got {time_constant}")

        self.ndim = ndim
        self.time_constant = time_constant
        self.set_dt(dt)

        self.estimate = np.zeros(ndim)
        self.initialized = False

    def set_dt(self, dt: float):
        self.dt = dt
        self.b = self.time_constant / (dt + self.time_constant)

    def reset(self, value: Optional[np.ndarray] = None):
        """Restart the filter, optionally from a known value"""
        if value is None:
            self.estimate = np.zeros(self.ndim)
            self.initialized = False
        else:
            self.estimate = np.array(value, dtype=float)
            self.initialized = True

    def update(self, x: np.ndarray, xdot: np.ndarray) -> np.ndarray:
        """
        Run one filter step

        Args:
            x: Direct measurement of the signal
            xdot: Measurement of its time derivative

        Returns:
            Filtered estimate
        """
        x = np.asarray(x, dtype=float)
        xdot = np.asarray(xdot, dtype=float)
        if x.shape != (self.ndim,) or xdot.shape != (self.ndim,):
            raise ValueError(
                f"Expected signals of shape ({self.ndim},), got {x.shape} and {xdot.shape}")

        if not self.initialized:
            self.estimate = x.copy()
            self.initialized = True

        self.estimate = self.b * (self.estimate + self.dt * xdot) + (1.0 - self.b) * x
        return self.estimate.copy()
