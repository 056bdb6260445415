"""
density_tables.py — Discretized cumulative-distribution tables for orbital sampling.

The sampling density ρ(r,θ,φ) = R_nl(r)^2 Y_lm(θ,φ)^2 r^2 separates exactly for
real harmonics, so one DensityTable holds three independent 1D CDFs:

  radial:  P(r)  ∝ r^2 R_nl(r)^2          on [0, r_max]
  polar:   P(θ)  ∝ Θ_l|m|(θ)^2 sin θ      on [0, π]
  azimuth: P(φ)  ∝ Φ_m(φ)^2               on [0, 2π]

Tables are built once per QuantumState, memoized, and shared read-only.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import logging
import math
import threading
import time

import numpy as np
from scipy import integrate

import physics
from physics import ArrayR, QuantumState

logger = logging.getLogger(__name__)


class DomainComputationFailure(RuntimeError):
    """Density integrated to zero (or non-finite) over the table domain."""


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TableConfig:
    """Discretization settings for DensityTableBuilder.

    tail_tolerance is the largest radial probability mass allowed beyond r_max.
    """
    radial_bins: int = 2048
    theta_bins: int = 512
    phi_bins: int = 512
    tail_tolerance: float = 1e-5
    tail_factor: float = 3.0
    tail_points: int = 8192
    growth: float = 1.5
    max_growth_steps: int = 40
    cache_size: int = 16

    def __post_init__(self) -> None:
        for name in ("radial_bins", "theta_bins", "phi_bins"):
            if int(getattr(self, name)) < 16:
                raise ValueError(f"{name} must be >= 16.")
        if not (0.0 < self.tail_tolerance < 1e-3):
            raise ValueError("tail_tolerance must lie in (0, 1e-3).")
        if self.tail_factor <= 1.0:
            raise ValueError("tail_factor must be > 1.")
        if self.tail_points < 256:
            raise ValueError("tail_points must be >= 256.")
        if self.growth <= 1.0:
            raise ValueError("growth must be > 1.")
        if self.max_growth_steps < 1 or self.cache_size < 1:
            raise ValueError("max_growth_steps and cache_size must be >= 1.")


# -----------------------------------------------------------------------------
# Table
# -----------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class DensityTable:
    """Immutable inverse-transform lookup tables for one QuantumState.

    Attributes
    ----------
    state : QuantumState
        Quantum numbers the table was built for.
    r_max : float
        Upper bound of the radial domain (Bohr radii).
    radial_edges, radial_cdf : np.ndarray
        Bin edges on [0, r_max] and the CDF at each edge (first 0, last 1).
    theta_edges, theta_cdf : np.ndarray
        Same for θ on [0, π].
    phi_edges, phi_cdf : np.ndarray
        Same for φ on [0, 2π].
    tail_mass : float
        Estimated radial probability beyond r_max.
    peak_density : float
        Largest |ψ|^2 on the table cells, used to scale visual weights.
    """
    state: QuantumState
    r_max: float
    radial_edges: ArrayR
    radial_cdf: ArrayR
    theta_edges: ArrayR
    theta_cdf: ArrayR
    phi_edges: ArrayR
    phi_cdf: ArrayR
    tail_mass: float
    peak_density: float

    def summary(self) -> Dict[str, Any]:
        return {
            "state": self.state.label,
            "r_max": float(self.r_max),
            "radial_bins": int(self.radial_cdf.size - 1),
            "theta_bins": int(self.theta_cdf.size - 1),
            "phi_bins": int(self.phi_cdf.size - 1),
            "tail_mass": float(self.tail_mass),
        }


def _readonly(arr: np.ndarray) -> ArrayR:
    out = np.ascontiguousarray(arr, dtype=np.float64)
    out.setflags(write=False)
    return out


def cdf_from_cells(edges: ArrayR, cell_density: ArrayR, *, what: str) -> ArrayR:
    """Prefix-sum per-bin density × width into a normalized CDF over the edges.

    Returns an array of len(edges) with cdf[0] == 0, cdf[-1] == 1, non-decreasing.
    """
    widths = np.diff(edges)
    mass = np.asarray(cell_density, dtype=np.float64) * widths
    if not np.all(np.isfinite(mass)):
        raise DomainComputationFailure(f"{what} density is non-finite on the table domain.")
    mass = np.clip(mass, 0.0, None)
    total = float(np.sum(mass))
    if not (total > 0.0) or total < np.finfo(np.float64).tiny:
        raise DomainComputationFailure(f"{what} density integrates to zero on the table domain.")

    cdf = np.empty(edges.size, dtype=np.float64)
    cdf[0] = 0.0
    np.cumsum(mass / total, out=cdf[1:])
    cdf[-1] = 1.0
    np.maximum.accumulate(cdf, out=cdf)
    np.clip(cdf, 0.0, 1.0, out=cdf)
    return cdf


def _centers(edges: ArrayR) -> ArrayR:
    return 0.5 * (edges[:-1] + edges[1:])


# -----------------------------------------------------------------------------
# Radial bound
# -----------------------------------------------------------------------------

def radial_tail_mass(state: QuantumState, r_max: float, config: TableConfig) -> float:
    """Estimate P(r > r_max) by integrating the radial marginal out to tail_factor·r_max."""
    r = np.linspace(0.0, config.tail_factor * r_max, int(config.tail_points), dtype=np.float64)
    p = physics.radial_probability_density(state, r)
    cum = integrate.cumulative_trapezoid(p, x=r, initial=0.0)
    total = float(cum[-1])
    if not np.isfinite(total) or total <= 0.0:
        raise DomainComputationFailure(f"Radial density of {state.label} integrates to zero.")
    inside = float(np.interp(r_max, r, cum))
    return max(0.0, 1.0 - inside / total)


def choose_radial_bound(state: QuantumState, config: TableConfig) -> Tuple[float, float]:
    """Grow r_max from a ⟨r⟩-based start until the radial tail mass is below tolerance.

    Returns (r_max, tail_mass).
    """
    r_max = max(4.0, 2.5 * state.mean_radius)
    for _ in range(int(config.max_growth_steps)):
        tail = radial_tail_mass(state, r_max, config)
        if tail <= config.tail_tolerance:
            return float(r_max), float(tail)
        r_max *= config.growth
    raise DomainComputationFailure(
        f"Could not bound the radial distribution of {state.label} "
        f"(tail mass {tail:.3e} at r_max={r_max / config.growth:.4g})."
    )


# -----------------------------------------------------------------------------
# Builder
# -----------------------------------------------------------------------------

class DensityTableBuilder:
    """Builds DensityTables and memoizes them by QuantumState value.

    get_or_build() is safe to call from several threads; a given state is built
    at most once while it stays in the cache.
    """

    def __init__(self, config: Optional[TableConfig] = None) -> None:
        self.config: TableConfig = config or TableConfig()
        self._cache: "OrderedDict[QuantumState, DensityTable]" = OrderedDict()
        self._cache_lock = threading.Lock()
        self._key_locks: Dict[QuantumState, threading.Lock] = {}
        self._hits = 0
        self._misses = 0

    def build(self, state: QuantumState) -> DensityTable:
        """Compute a fresh table (no caching)."""
        cfg = self.config
        t0 = time.perf_counter()

        r_max, tail = choose_radial_bound(state, cfg)

        r_edges = np.linspace(0.0, r_max, int(cfg.radial_bins) + 1, dtype=np.float64)
        r_cells = _centers(r_edges)
        r_density = physics.radial_probability_density(state, r_cells)
        r_cdf = cdf_from_cells(r_edges, r_density, what="Radial")

        th_edges = np.linspace(0.0, math.pi, int(cfg.theta_bins) + 1, dtype=np.float64)
        th_cells = _centers(th_edges)
        th_factor = physics.theta_factor(state, th_cells)
        th_cdf = cdf_from_cells(th_edges, th_factor * th_factor * np.sin(th_cells), what="Polar")

        ph_edges = np.linspace(0.0, 2.0 * math.pi, int(cfg.phi_bins) + 1, dtype=np.float64)
        ph_cells = _centers(ph_edges)
        ph_factor = physics.phi_factor(state, ph_cells)
        ph_cdf = cdf_from_cells(ph_edges, ph_factor * ph_factor, what="Azimuthal")

        # |ψ|^2 = R^2 Θ^2 Φ^2 separates, so the peak is the product of factor peaks
        R = physics.radial_wavefunction(state, r_cells)
        peak = float(np.max(R * R) * np.max(th_factor * th_factor) * np.max(ph_factor * ph_factor))

        table = DensityTable(
            state=state,
            r_max=float(r_max),
            radial_edges=_readonly(r_edges),
            radial_cdf=_readonly(r_cdf),
            theta_edges=_readonly(th_edges),
            theta_cdf=_readonly(th_cdf),
            phi_edges=_readonly(ph_edges),
            phi_cdf=_readonly(ph_cdf),
            tail_mass=float(tail),
            peak_density=peak,
        )
        logger.info(
            f"Built density table for {state.label}: r_max={r_max:.4g}, tail={tail:.2e}, "
            f"{time.perf_counter() - t0:.3f}s"
        )
        return table

    def get_or_build(self, state: QuantumState) -> DensityTable:
        """Return the cached table for state, building it once if needed."""
        with self._cache_lock:
            hit = self._cache.get(state)
            if hit is not None:
                self._cache.move_to_end(state)
                self._hits += 1
                logger.debug(f"Density table cache hit for {state.label}")
                return hit
            key_lock = self._key_locks.setdefault(state, threading.Lock())

        with key_lock:
            with self._cache_lock:
                hit = self._cache.get(state)
                if hit is not None:
                    self._hits += 1
                    return hit
            try:
                table = self.build(state)
            except Exception:
                with self._cache_lock:
                    self._key_locks.pop(state, None)
                raise
            with self._cache_lock:
                self._misses += 1
                self._cache[state] = table
                self._cache.move_to_end(state)
                while len(self._cache) > int(self.config.cache_size):
                    evicted, _ = self._cache.popitem(last=False)
                    logger.debug(f"Evicted density table for {evicted.label}")
                self._key_locks.pop(state, None)
            return table

    def cache_info(self) -> Dict[str, int]:
        with self._cache_lock:
            return {"hits": self._hits, "misses": self._misses, "size": len(self._cache)}

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0


def validate_table(table: DensityTable, *, atol: float = 1e-9) -> Dict[str, Any]:
    """Check CDF invariants (monotone, first 0, last 1) on all three axes."""
    out: Dict[str, Any] = {"ok": True, "problems": []}
    axes: Dict[str, Tuple[ArrayR, ArrayR]] = {
        "radial": (table.radial_edges, table.radial_cdf),
        "theta": (table.theta_edges, table.theta_cdf),
        "phi": (table.phi_edges, table.phi_cdf),
    }
    checks: Dict[str, Callable[[ArrayR, ArrayR], bool]] = {
        "shape": lambda e, c: e.shape == c.shape,
        "monotone": lambda e, c: bool(np.all(np.diff(c) >= 0.0)),
        "starts_at_zero": lambda e, c: abs(float(c[0])) <= atol,
        "ends_at_one": lambda e, c: abs(float(c[-1]) - 1.0) <= atol,
        "edges_increasing": lambda e, c: bool(np.all(np.diff(e) > 0.0)),
    }
    for axis, (edges, cdf) in axes.items():
        for name, check in checks.items():
            if not check(edges, cdf):
                out["ok"] = False
                out["problems"].append(f"{axis}: {name}")
    return out
