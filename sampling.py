"""
sampling.py — Inverse-transform sampling of orbital particle clouds.

A Sampler turns a DensityTable plus uniform random numbers into Cartesian points:

  u_r, u_θ, u_φ ~ U[0,1)
  r = F_r^-1(u_r),  θ = F_θ^-1(u_θ),  φ = F_φ^-1(u_φ)
  (x, y, z) = (r sin θ cos φ, r sin θ sin φ, r cos θ)

Each draw is independent, so a batch may be split over worker threads with
independent random streams; workers share only the read-only table.
"""
from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Literal, Optional, Union, overload

import atexit
import logging
import os
import threading
import time

import numpy as np

import physics
from density_tables import DensityTable
from physics import ArrayR, QuantumState

logger = logging.getLogger(__name__)

WeightMode = Literal["density", "sign", "none"]
RandomSource = Union[np.random.Generator, int, None]

_num_threads = os.cpu_count() or 4

# Thread pool shared by batch workers and background table builds
_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def get_executor() -> ThreadPoolExecutor:
    """Get or create the global thread pool executor."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=max(_num_threads, 2), thread_name_prefix="orbital")
    return _executor


def _shutdown_executor() -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=False)
            _executor = None


atexit.register(_shutdown_executor)


def as_generator(rng: RandomSource) -> np.random.Generator:
    """Accept a Generator, an integer seed, or None (fresh entropy)."""
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)


# -----------------------------------------------------------------------------
# Samples
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """One point of the particle cloud plus its visual weight."""
    x: float
    y: float
    z: float
    weight: float = 1.0


@dataclass(frozen=True, eq=False)
class SampleBatch(Sequence):
    """Columnar batch of samples; indexing/iteration yields Sample objects lazily.

    Attributes
    ----------
    state : QuantumState
        Orbital the batch was drawn from.
    points : np.ndarray
        Cartesian positions, shape (N, 3).
    r, theta, phi : np.ndarray
        Spherical coordinates of the same points, shape (N,).
    weights : np.ndarray
        Visual weight per point, shape (N,).
    """
    state: QuantumState
    points: ArrayR
    r: ArrayR
    theta: ArrayR
    phi: ArrayR
    weights: ArrayR

    def __len__(self) -> int:
        return int(self.points.shape[0])

    @overload
    def __getitem__(self, index: int) -> Sample: ...

    @overload
    def __getitem__(self, index: slice) -> List[Sample]: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(self)))]
        x, y, z = self.points[index]
        return Sample(float(x), float(y), float(z), float(self.weights[index]))

    def __iter__(self) -> Iterator[Sample]:
        for i in range(len(self)):
            yield self[i]

    def extent(self) -> float:
        """Largest |coordinate| in the batch (0 for an empty batch)."""
        return float(np.max(np.abs(self.points))) if len(self) else 0.0


# -----------------------------------------------------------------------------
# Inverse CDF
# -----------------------------------------------------------------------------

def invert_cdf(u: ArrayR, edges: ArrayR, cdf: ArrayR) -> ArrayR:
    """Map uniforms u in [0,1) through the piecewise-linear inverse of (edges, cdf).

    Binary search finds the bracketing breakpoints, then the position is
    interpolated linearly inside that bin. Zero-mass bins are never selected
    for u strictly inside (cdf[i], cdf[i+1]].
    """
    u = np.asarray(u, dtype=np.float64)
    n_bins = edges.size - 1
    idx = np.searchsorted(cdf, u, side="right") - 1
    np.clip(idx, 0, n_bins - 1, out=idx)

    lo = cdf[idx]
    hi = cdf[idx + 1]
    span = hi - lo
    frac = np.where(span > 0.0, (u - lo) / np.where(span > 0.0, span, 1.0), 0.0)
    np.clip(frac, 0.0, 1.0, out=frac)
    return edges[idx] + frac * (edges[idx + 1] - edges[idx])


# -----------------------------------------------------------------------------
# Sampler
# -----------------------------------------------------------------------------

class Sampler:
    """Stateless (apart from its inputs) particle-cloud generator.

    weight_mode:
    - "density": |ψ|^2 at the point divided by the table's peak density, in [0, 1]
    - "sign": sign of ψ (+1 / -1), for two-color lobes
    - "none": all ones
    """

    def __init__(self, weight_mode: WeightMode = "density", workers: int = 1) -> None:
        if weight_mode not in ("density", "sign", "none"):
            raise ValueError(f"Unknown weight_mode {weight_mode!r}.")
        if int(workers) < 1:
            raise ValueError("workers must be >= 1.")
        self.weight_mode: WeightMode = weight_mode
        self.workers: int = int(workers)

    def _weights(self, table: DensityTable, r: ArrayR, theta: ArrayR, phi: ArrayR) -> ArrayR:
        if self.weight_mode == "none":
            return np.ones_like(r)
        psi = physics.wavefunction(table.state, r, theta, phi)
        if self.weight_mode == "sign":
            return np.where(psi < 0.0, -1.0, 1.0)
        peak = table.peak_density if table.peak_density > 0.0 else 1.0
        return np.clip(psi * psi / peak, 0.0, 1.0)

    def _draw(self, table: DensityTable, count: int, rng: np.random.Generator):
        u = rng.random((3, count))
        r = invert_cdf(u[0], table.radial_edges, table.radial_cdf)
        theta = invert_cdf(u[1], table.theta_edges, table.theta_cdf)
        phi = invert_cdf(u[2], table.phi_edges, table.phi_cdf)
        return r, theta, phi

    def generate_batch(self, table: DensityTable, count: int, rng: RandomSource = None) -> SampleBatch:
        """Draw count independent samples from table."""
        count = int(count)
        if count < 0:
            raise ValueError("count must be >= 0.")
        gen = as_generator(rng)
        t0 = time.perf_counter()

        if self.workers == 1 or count < 2 * self.workers:
            r, theta, phi = self._draw(table, count, gen)
        else:
            sizes = [count // self.workers + (1 if i < count % self.workers else 0) for i in range(self.workers)]
            children = gen.spawn(self.workers)
            futures = [
                get_executor().submit(self._draw, table, size, child)
                for size, child in zip(sizes, children)
            ]
            parts = [f.result() for f in futures]
            r = np.concatenate([p[0] for p in parts])
            theta = np.concatenate([p[1] for p in parts])
            phi = np.concatenate([p[2] for p in parts])

        points = physics.spherical_to_cartesian(r, theta, phi).reshape(count, 3)
        weights = self._weights(table, r, theta, phi)

        logger.debug(
            f"Sampled {count} points for {table.state.label} "
            f"({self.workers} worker(s), {time.perf_counter() - t0:.3f}s)"
        )
        return SampleBatch(
            state=table.state,
            points=points,
            r=r,
            theta=theta,
            phi=phi,
            weights=weights,
        )

    def stream(self, table: DensityTable, batch_size: int, rng: RandomSource = None) -> Iterator[SampleBatch]:
        """Endless lazy sequence of fresh batches from the same table."""
        gen = as_generator(rng)
        while True:
            yield self.generate_batch(table, batch_size, gen)
