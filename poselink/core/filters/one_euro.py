"""One-Euro adaptive low-pass filter.

The filter smooths a scalar signal with a cutoff frequency that rises with the
signal's speed: slow movements are smoothed heavily (less jitter), fast
movements pass through with little lag. Time comes exclusively from the
caller-supplied timestamps, so a given timestamp sequence always produces the
same output.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

MIN_DT = 1e-6


def smoothing_alpha(dt: float, cutoff: float) -> float:
    """Return the exponential smoothing factor for a sample period and cutoff."""

    tau = 1.0 / (2.0 * math.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


def lowpass(x: float, prev: float, alpha: float) -> float:
    return alpha * x + (1.0 - alpha) * prev


def _validate_params(min_cutoff: float, beta: float, derivative_cutoff: float) -> None:
    if not min_cutoff > 0.0:
        raise ValueError("min_cutoff must be > 0")
    if beta < 0.0:
        raise ValueError("beta must be >= 0")
    if not derivative_cutoff > 0.0:
        raise ValueError("derivative_cutoff must be > 0")


@dataclass
class FilterState:
    """Internal state for one scalar signal."""

    last_value: float = 0.0
    last_derivative: float = 0.0
    last_time: float = 0.0
    initialized: bool = False


class OneEuroFilter:
    """Scalar One-Euro filter.

    The first call returns the input unchanged; every later call follows the
    usual derivative-smoothing / adaptive-cutoff recurrence.
    """

    def __init__(
        self, min_cutoff: float = 1.0, beta: float = 0.0, derivative_cutoff: float = 1.0
    ) -> None:
        _validate_params(min_cutoff, beta, derivative_cutoff)
        self.min_cutoff = float(min_cutoff)
        self.beta = float(beta)
        self.derivative_cutoff = float(derivative_cutoff)
        self.state = FilterState()

    def update_params(
        self,
        min_cutoff: float | None = None,
        beta: float | None = None,
        derivative_cutoff: float | None = None,
    ) -> None:
        """Retune the filter without touching its state."""

        new_min = self.min_cutoff if min_cutoff is None else float(min_cutoff)
        new_beta = self.beta if beta is None else float(beta)
        new_dc = self.derivative_cutoff if derivative_cutoff is None else float(derivative_cutoff)
        _validate_params(new_min, new_beta, new_dc)
        self.min_cutoff, self.beta, self.derivative_cutoff = new_min, new_beta, new_dc

    def filter(self, value: float, timestamp: float) -> float:
        state = self.state
        value = float(value)
        if not state.initialized:
            state.last_value = value
            state.last_derivative = 0.0
            state.last_time = float(timestamp)
            state.initialized = True
            return value

        dt = max(float(timestamp) - state.last_time, MIN_DT)
        derivative = (value - state.last_value) / dt
        filtered_derivative = lowpass(
            derivative, state.last_derivative, smoothing_alpha(dt, self.derivative_cutoff)
        )
        cutoff = self.min_cutoff + self.beta * abs(filtered_derivative)
        result = lowpass(value, state.last_value, smoothing_alpha(dt, cutoff))

        state.last_value = result
        state.last_derivative = filtered_derivative
        state.last_time = float(timestamp)
        return result

    __call__ = filter

    def reset(self) -> None:
        self.state = FilterState()


class OneEuroFilter3:
    """Three independent scalar filters sharing one set of parameters."""

    def __init__(
        self, min_cutoff: float = 1.0, beta: float = 0.0, derivative_cutoff: float = 1.0
    ) -> None:
        self.axes = tuple(OneEuroFilter(min_cutoff, beta, derivative_cutoff) for _ in range(3))

    def update_params(
        self,
        min_cutoff: float | None = None,
        beta: float | None = None,
        derivative_cutoff: float | None = None,
    ) -> None:
        for f in self.axes:
            f.update_params(min_cutoff, beta, derivative_cutoff)

    def filter(self, value, timestamp: float) -> np.ndarray:
        return np.array(
            [f.filter(v, timestamp) for f, v in zip(self.axes, value)], dtype=np.float64
        )

    __call__ = filter

    def reset(self) -> None:
        for f in self.axes:
            f.reset()


class LandmarkFilterBank:
    """One `OneEuroFilter3` per landmark of a tracked person.

    Filters are created lazily, so a bank adapts to whatever landmark count the
    detector sends. Parameters are pushed to every filter on each call.
    """

    def __init__(
        self, min_cutoff: float = 1.0, beta: float = 0.0, derivative_cutoff: float = 1.0
    ) -> None:
        _validate_params(min_cutoff, beta, derivative_cutoff)
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.derivative_cutoff = derivative_cutoff
        self._filters: list[OneEuroFilter3] = []

    def __len__(self) -> int:
        return len(self._filters)

    def update_params(self, min_cutoff: float, beta: float, derivative_cutoff: float) -> None:
        _validate_params(min_cutoff, beta, derivative_cutoff)
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.derivative_cutoff = derivative_cutoff

    def filter(self, points: np.ndarray, timestamp: float) -> np.ndarray:
        """Filter an (N, 3) array of positions and return the smoothed copy."""

        points = np.asarray(points, dtype=np.float64)
        while len(self._filters) < points.shape[0]:
            self._filters.append(
                OneEuroFilter3(self.min_cutoff, self.beta, self.derivative_cutoff)
            )
        out = np.empty_like(points)
        for i, point in enumerate(points):
            f = self._filters[i]
            f.update_params(self.min_cutoff, self.beta, self.derivative_cutoff)
            out[i] = f.filter(point, timestamp)
        return out

    def reset(self) -> None:
        self._filters.clear()
