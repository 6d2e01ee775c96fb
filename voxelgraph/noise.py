"""
Noise samplers consumed by the NOISE_2D / NOISE_3D nodes.

Nodes only rely on the `NoiseResource` interface, so any sampler that
evaluates whole coordinate arrays at once can be plugged in. `ValueNoise`
is a small deterministic lattice noise good enough for graphs and tests.
"""
from abc import ABC, abstractmethod
from typing import Tuple

import logging

import numpy as np

logger = logging.getLogger(__name__)


class NoiseResource(ABC):
    """Opaque leaf sampler. Results must stay in `get_range()`."""

    @abstractmethod
    def get_noise_2d(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        pass

    @abstractmethod
    def get_noise_3d(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        pass

    def get_range(self) -> Tuple[float, float]:
        return (-1.0, 1.0)

    @abstractmethod
    def hash_state(self) -> tuple:
        """Everything that affects sampled values. Equal state means equal output."""

    @abstractmethod
    def duplicate(self) -> 'NoiseResource':
        pass


_MASK32 = np.uint64(0xFFFFFFFF)


def _hash_lattice(seed: int, *coords: np.ndarray) -> np.ndarray:
    primes = (np.uint64(0x27D4EB2D), np.uint64(0x165667B1), np.uint64(0x9E3779B1))
    h = np.full(coords[0].shape, np.uint64(seed & 0xFFFFFFFF) * np.uint64(0x85EBCA77) & _MASK32, dtype=np.uint64)
    for c, prime in zip(coords, primes):
        h = (h ^ (c.astype(np.int64).astype(np.uint64) * prime)) & _MASK32
        h = (h ^ (h >> np.uint64(15))) * np.uint64(0x2C1B3C6D) & _MASK32
    h = (h ^ (h >> np.uint64(13))) * np.uint64(0x297A2D39) & _MASK32
    h = h ^ (h >> np.uint64(16))
    # Map to [-1, 1]
    return (h & np.uint64(0xFFFF)).astype(np.float64) / 32767.5 - 1.0


def _fade(t: np.ndarray) -> np.ndarray:
    return t * t * (3.0 - 2.0 * t)


class ValueNoise(NoiseResource):
    def __init__(self, seed: int = 0, period: float = 64.0):
        self.seed = int(seed)
        self.set_period(period)

    def get_period(self) -> float:
        return self.period

    def set_period(self, period: float):
        if period <= 0:
            raise ValueError(f"Noise period must be positive, got {period}")
        self.period = float(period)

    def get_seed(self) -> int:
        return self.seed

    def set_seed(self, seed: int):
        self.seed = int(seed)

    def get_noise_2d(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        fx = np.asarray(x, dtype=np.float64) / self.period
        fy = np.asarray(y, dtype=np.float64) / self.period
        x0 = np.floor(fx)
        y0 = np.floor(fy)
        tx = _fade(fx - x0)
        ty = _fade(fy - y0)

        v00 = _hash_lattice(self.seed, x0, y0)
        v10 = _hash_lattice(self.seed, x0 + 1, y0)
        v01 = _hash_lattice(self.seed, x0, y0 + 1)
        v11 = _hash_lattice(self.seed, x0 + 1, y0 + 1)

        a = v00 + tx * (v10 - v00)
        b = v01 + tx * (v11 - v01)
        return a + ty * (b - a)

    def get_noise_3d(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        fx = np.asarray(x, dtype=np.float64) / self.period
        fy = np.asarray(y, dtype=np.float64) / self.period
        fz = np.asarray(z, dtype=np.float64) / self.period
        x0 = np.floor(fx)
        y0 = np.floor(fy)
        z0 = np.floor(fz)
        tx = _fade(fx - x0)
        ty = _fade(fy - y0)
        tz = _fade(fz - z0)

        def layer(zc):
            v00 = _hash_lattice(self.seed, x0, y0, zc)
            v10 = _hash_lattice(self.seed, x0 + 1, y0, zc)
            v01 = _hash_lattice(self.seed, x0, y0 + 1, zc)
            v11 = _hash_lattice(self.seed, x0 + 1, y0 + 1, zc)
            a = v00 + tx * (v10 - v00)
            b = v01 + tx * (v11 - v01)
            return a + ty * (b - a)

        near = layer(z0)
        far = layer(z0 + 1)
        return near + tz * (far - near)

    def hash_state(self) -> tuple:
        return (type(self).__name__, self.seed, self.period)

    def duplicate(self) -> 'ValueNoise':
        return ValueNoise(self.seed, self.period)

    def __repr__(self):
        return f"ValueNoise(seed={self.seed}, period={self.period})"
