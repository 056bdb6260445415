"""
model.py — Shared simulation state and the render-loop particle feed.

Key rules:
- The (QuantumState, DensityTable) pair is published as one immutable Snapshot.
- Readers never lock; writers build tables off to the side and only swap the
  Snapshot reference under a short lock.
- A failed rebuild leaves the previous Snapshot published.
"""
from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import logging
import threading

import numpy as np

import physics
from density_tables import DensityTable, DensityTableBuilder, DomainComputationFailure
from physics import QuantumState
from sampling import RandomSource, SampleBatch, Sampler, as_generator, get_executor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Snapshot:
    """Consistent published pair plus a monotonically increasing generation."""
    state: QuantumState
    table: DensityTable
    generation: int


Listener = Callable[[Snapshot], None]


class SimulationState:
    """Process-wide holder of the active orbital and its density table.

    current() is lock-free: it reads a single Snapshot reference. replace()
    computes the table outside the lock and then swaps the reference.
    """

    def __init__(
        self,
        builder: Optional[DensityTableBuilder] = None,
        initial: Optional[QuantumState] = None,
    ) -> None:
        self.builder: DensityTableBuilder = builder or DensityTableBuilder()
        self._snapshot: Optional[Snapshot] = None
        self._publish_lock = threading.Lock()
        self._generation = 0
        self._request_seq = 0
        self._published_request = 0
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()
        if initial is not None:
            self.replace(initial)

    # -----------------------
    # Read path
    # -----------------------

    def snapshot(self) -> Snapshot:
        snap = self._snapshot
        if snap is None:
            raise RuntimeError("No orbital has been published yet; call replace() first.")
        return snap

    def current(self) -> Tuple[QuantumState, DensityTable]:
        """Return the published (QuantumState, DensityTable) pair."""
        snap = self.snapshot()
        return snap.state, snap.table

    @property
    def has_state(self) -> bool:
        return self._snapshot is not None

    @property
    def generation(self) -> int:
        snap = self._snapshot
        return snap.generation if snap is not None else 0

    # -----------------------
    # Write path
    # -----------------------

    def replace(self, state: QuantumState) -> Snapshot:
        """Build (or fetch) the table for state and publish the new pair atomically.

        Raises DomainComputationFailure if the table cannot be built; the
        previous pair stays published in that case. Concurrent replace()
        calls are last-writer-wins.
        """
        return self._replace(state, request=None)

    def replace_async(self, state: QuantumState) -> "Future[Snapshot]":
        """Run the rebuild on the shared executor; the old pair stays readable meanwhile.

        Async requests are ordered by submission: a build that finishes after a
        newer request has published is dropped, and its future resolves to the
        newer snapshot instead (compare ``result().state`` with the request).
        """
        with self._publish_lock:
            self._request_seq += 1
            request = self._request_seq
        return get_executor().submit(self._replace, state, request)

    def _replace(self, state: QuantumState, request: Optional[int]) -> Snapshot:
        if not isinstance(state, QuantumState):
            raise TypeError(f"replace() expects a QuantumState, got {type(state).__name__}.")
        try:
            table = self.builder.get_or_build(state)
        except DomainComputationFailure as e:
            logger.warning(f"Keeping previous orbital; table build for {state.label} failed: {e}")
            raise

        with self._publish_lock:
            stale = request is not None and request < self._published_request
            if stale:
                snap = self._snapshot
            else:
                if request is not None:
                    self._published_request = request
                self._generation += 1
                snap = Snapshot(state=state, table=table, generation=self._generation)
                self._snapshot = snap

        if stale:
            logger.info(f"Dropped {state.label}: superseded by a newer request")
            assert snap is not None
            return snap
        logger.info(f"Published {state.label} (generation {snap.generation}, r_max={table.r_max:.4g})")
        self._notify(snap)
        return snap

    # -----------------------
    # Listeners
    # -----------------------

    def add_listener(self, callback: Listener) -> None:
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, snap: Snapshot) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for cb in listeners:
            try:
                cb(snap)
            except Exception:
                logger.exception(f"Snapshot listener {cb!r} failed")


class ParticleCloudFeed:
    """Render-loop side: re-samples when the published orbital changes.

    poll() is meant to be called once per frame. It returns a new SampleBatch
    when the generation moved (or force=True, for animation) and None otherwise.
    """

    def __init__(
        self,
        simulation: SimulationState,
        sampler: Optional[Sampler] = None,
        batch_size: int = 50_000,
        rng: RandomSource = None,
    ) -> None:
        if int(batch_size) < 1:
            raise ValueError("batch_size must be >= 1.")
        self.simulation = simulation
        self.sampler: Sampler = sampler or Sampler()
        self.batch_size: int = int(batch_size)
        self._rng = as_generator(rng)
        self._seen_generation = 0
        self.cloud: Optional[SampleBatch] = None

    def poll(self, force: bool = False) -> Optional[SampleBatch]:
        if not self.simulation.has_state:
            return None
        snap = self.simulation.snapshot()
        if not force and snap.generation == self._seen_generation and self.cloud is not None:
            return None
        batch = self.sampler.generate_batch(snap.table, self.batch_size, self._rng)
        self._seen_generation = snap.generation
        self.cloud = batch
        return batch

    def set_batch_size(self, batch_size: int) -> None:
        if int(batch_size) < 1:
            raise ValueError("batch_size must be >= 1.")
        self.batch_size = int(batch_size)

    def describe(self) -> str:
        if not self.simulation.has_state:
            return "no orbital"
        state, table = self.simulation.current()
        return (
            f"{state.label}  E={state.energy:+.6f} Ha  <r>={state.mean_radius:.2f} a0  "
            f"r_max={table.r_max:.1f} a0"
        )


def radial_histogram(batch: SampleBatch, r_max: float, n_bins: int = 128):
    """Histogram of sampled r as a density, paired with the analytic r^2 R^2 curve.

    Returns (centers, sampled_density, analytic_density).
    """
    edges = np.linspace(0.0, float(r_max), int(n_bins) + 1)
    hist, _ = np.histogram(batch.r, bins=edges, density=True)
    centers = 0.5 * (edges[:-1] + edges[1:])
    analytic = physics.radial_probability_density(batch.state, centers)
    return centers, hist, analytic
