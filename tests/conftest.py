"""Shared fixtures: synthetic clouds and a controllable clock."""
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float):
        self.now += dt


def make_floor(rng, nx=100, ny=50, spacing=0.01, noise=0.005):
    """Jittered grid at z=0 (5000 points over 1 m x 0.5 m by default)."""
    gx, gy = np.meshgrid(np.arange(nx) * spacing, np.arange(ny) * spacing, indexing='ij')
    xy = np.column_stack([gx.ravel(), gy.ravel()])
    xy += rng.uniform(-0.2 * spacing, 0.2 * spacing, xy.shape)
    z = rng.uniform(-noise, noise, len(xy))
    return np.column_stack([xy, z])


def make_box(rng, n=2000, corner=(0.35, 0.1, 1.0), size=0.3):
    """Filled cube with its lower corner at `corner`."""
    return np.asarray(corner) + rng.uniform(0.0, size, (n, 3))


def make_blob(rng, center, n=300, sigma=0.02):
    return rng.normal(0.0, sigma, (n, 3)) + np.asarray(center, dtype=float)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def floor_and_box(rng):
    """5000 floor points and a 2000 point box 1 m above them."""
    return make_floor(rng), make_box(rng)
