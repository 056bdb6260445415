"""
physics.py — Non-relativistic hydrogen wave function evaluation.

Scope (strict):
- V(r) = -1 / r   (hydrogen, Z = 1, point nucleus)
- Atomic units: ħ = m_e = e = a0 = 1
- Bound stationary states ψ_nlm only, real spherical harmonics

Wave function convention:
ψ(r,θ,φ) = R_nl(r) Y_lm(θ,φ)

Radial part:
  ρ = 2 r / n
  R_nl(r) = N_nl exp(-ρ/2) ρ^l L_{n-l-1}^{(2l+1)}(ρ)
  ∫_0^∞ R_nl(r)^2 r^2 dr = 1

Angular part (real harmonics, no Condon–Shortley phase):
  Y_lm(θ,φ) = Θ_l|m|(θ) Φ_m(φ)
  Θ_l|m|(θ) = √(2π) P̄_l^|m|(cos θ)      ∫ Θ^2 sin θ dθ = 1
  Φ_0 = 1/√(2π),  Φ_m = cos(mφ)/√π (m>0),  Φ_m = sin(|m|φ)/√π (m<0)

Numerical strategy:
- Laguerre polynomials by three-term recurrence (numba kernel).
- Fully normalized associated Legendre functions by recurrence in l, seeded
  in the log domain (numba kernel). No factorial products anywhere.
- The radial envelope N exp(-ρ/2) ρ^l is assembled in the log domain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Integral
from typing import Tuple

import math
import numpy as np
from numba import jit
from numpy.typing import ArrayLike, NDArray
from scipy import special

ArrayR = NDArray[np.float64]


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class ValidationError(ValueError):
    """Quantum numbers outside n >= 1, 0 <= l < n, -l <= m <= l.

    Attributes
    ----------
    bound : str
        The violated bound, e.g. ``"n >= 1"``, ``"0 <= l <= n-1"``, ``"|m| <= l"``
        or ``"integer"``.
    """

    def __init__(self, message: str, bound: str) -> None:
        super().__init__(message)
        self.bound = bound


class NumericOverflowError(FloatingPointError):
    """Wave function evaluation produced a non-finite value (internal bug)."""


# -----------------------------------------------------------------------------
# Quantum numbers
# -----------------------------------------------------------------------------

def _as_quantum_int(value: object, name: str) -> int:
    """Return value as a plain int, or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got {value!r}.", "integer")
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, (float, np.floating)) and math.isfinite(value) and float(value).is_integer():
        return int(value)
    raise ValidationError(f"{name} must be an integer, got {value!r}.", "integer")


def _check_bounds(n: int, l: int, m: int) -> None:
    if n < 1:
        raise ValidationError(f"n must satisfy n >= 1 (got n={n}).", "n >= 1")
    if not (0 <= l <= n - 1):
        raise ValidationError(
            f"l must satisfy 0 <= l <= n-1 (got n={n}, l={l}).", "0 <= l <= n-1"
        )
    if abs(m) > l:
        raise ValidationError(f"m must satisfy |m| <= l (got l={l}, m={m}).", "|m| <= l")


def _log_radial_norm(n: int, l: int) -> float:
    # N_nl^2 = (2/n)^3 (n-l-1)! / (2n (n+l)!)
    return 0.5 * (
        3.0 * math.log(2.0 / n)
        + float(special.gammaln(n - l))
        - math.log(2.0 * n)
        - float(special.gammaln(n + l + 1))
    )


def _log_angular_norm(abs_m: int) -> float:
    # P̄_m^m = sqrt((2m+1)/(4π) * (2m)! / (2^m m!)^2) sin^m θ
    return 0.5 * (
        math.log(2.0 * abs_m + 1.0)
        - math.log(4.0 * math.pi)
        + float(special.gammaln(2 * abs_m + 1))
        - 2.0 * abs_m * math.log(2.0)
        - 2.0 * float(special.gammaln(abs_m + 1))
    )


@dataclass(frozen=True)
class QuantumState:
    """Hydrogen orbital quantum numbers (immutable, always valid).

    Parameters
    ----------
    n : int
        Principal quantum number (n >= 1).
    l : int
        Azimuthal quantum number (0 <= l <= n-1).
    m : int
        Magnetic quantum number (-l <= m <= l).

    Equality and hashing use (n, l, m) only; the log-domain normalization
    constants are derived once at construction.
    """
    n: int
    l: int
    m: int
    log_radial_norm: float = field(init=False, repr=False, compare=False)
    log_angular_norm: float = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        n = _as_quantum_int(self.n, "n")
        l = _as_quantum_int(self.l, "l")
        m = _as_quantum_int(self.m, "m")
        _check_bounds(n, l, m)
        object.__setattr__(self, "n", n)
        object.__setattr__(self, "l", l)
        object.__setattr__(self, "m", m)
        object.__setattr__(self, "log_radial_norm", _log_radial_norm(n, l))
        object.__setattr__(self, "log_angular_norm", _log_angular_norm(abs(m)))

    @property
    def radial_degree(self) -> int:
        """Degree of the Laguerre polynomial (number of radial nodes)."""
        return self.n - self.l - 1

    @property
    def laguerre_order(self) -> int:
        return 2 * self.l + 1

    @property
    def abs_m(self) -> int:
        return abs(self.m)

    @property
    def energy(self) -> float:
        """Bound-state energy in Hartree, E_n = -1/(2n^2)."""
        return -0.5 / (self.n * self.n)

    @property
    def mean_radius(self) -> float:
        """Expectation value <r> = (3n^2 - l(l+1)) / 2 in Bohr radii."""
        return 0.5 * (3.0 * self.n * self.n - self.l * (self.l + 1))

    @property
    def label(self) -> str:
        letters = "spdfghiklmnoqrtuvwxyz"
        letter = letters[self.l] if self.l < len(letters) else f"[l={self.l}]"
        return f"{self.n}{letter} (m={self.m:+d})"


def validate_and_construct(n: object, l: object, m: object) -> QuantumState:
    """Validate a raw (n, l, m) triple and build a QuantumState.

    Raises ValidationError naming the violated bound.
    """
    return QuantumState(
        n=_as_quantum_int(n, "n"),
        l=_as_quantum_int(l, "l"),
        m=_as_quantum_int(m, "m"),
    )


# -----------------------------------------------------------------------------
# Special-function kernels
# -----------------------------------------------------------------------------

_LAGUERRE_RESCALE = 1e200
_LOG_LAGUERRE_RESCALE = math.log(_LAGUERRE_RESCALE)


@jit(nopython=True, cache=True)
def _laguerre_recurrence(degree: int, alpha: float, x: ArrayR) -> Tuple[ArrayR, ArrayR]:
    """Generalized Laguerre L_degree^(alpha)(x) by the three-term recurrence.

    Returns (mantissa, log_scale) with L = mantissa * exp(log_scale); the
    recurrence is rescaled whenever |L_k| grows past _LAGUERRE_RESCALE.
    """
    out = np.empty_like(x)
    log_scale = np.zeros_like(x)
    for i in range(x.shape[0]):
        xi = x[i]
        if degree == 0:
            out[i] = 1.0
            continue
        prev = 1.0
        cur = 1.0 + alpha - xi
        acc = 0.0
        for k in range(1, degree):
            nxt = ((2.0 * k + 1.0 + alpha - xi) * cur - (k + alpha) * prev) / (k + 1.0)
            prev = cur
            cur = nxt
            if abs(cur) > _LAGUERRE_RESCALE:
                cur /= _LAGUERRE_RESCALE
                prev /= _LAGUERRE_RESCALE
                acc += _LOG_LAGUERRE_RESCALE
        out[i] = cur
        log_scale[i] = acc
    return out, log_scale


@jit(nopython=True, cache=True)
def _normalized_legendre(l: int, m: int, cos_t: ArrayR, sin_t: ArrayR, seed: float) -> ArrayR:
    """Fully normalized P̄_l^m(cos θ), recurrence in l from P̄_m^m = seed sin^m θ."""
    out = np.empty_like(cos_t)
    a_first = math.sqrt(2.0 * m + 3.0)
    for i in range(cos_t.shape[0]):
        x = cos_t[i]
        pmm = seed
        for _ in range(m):
            pmm *= sin_t[i]
        if l == m:
            out[i] = pmm
            continue
        cur = a_first * x * pmm
        if l == m + 1:
            out[i] = cur
            continue
        prev = pmm
        a_prev = a_first
        for ll in range(m + 2, l + 1):
            a = math.sqrt((4.0 * ll * ll - 1.0) / (ll * ll - m * m))
            nxt = a * (x * cur - prev / a_prev)
            prev = cur
            cur = nxt
            a_prev = a
        out[i] = cur
    return out


def _check_finite(values: np.ndarray, where: str) -> None:
    if not np.all(np.isfinite(values)):
        raise NumericOverflowError(f"Non-finite value in {where}; evaluation is numerically unstable.")


def _flat(values: ArrayLike) -> Tuple[ArrayR, Tuple[int, ...]]:
    arr = np.asarray(values, dtype=np.float64)
    return np.ascontiguousarray(arr.ravel()), arr.shape


# -----------------------------------------------------------------------------
# Wave function factors
# -----------------------------------------------------------------------------

def radial_wavefunction(state: QuantumState, r: ArrayLike) -> ArrayR:
    """R_nl(r), normalized so that ∫ R^2 r^2 dr = 1. r must be >= 0."""
    r_flat, shape = _flat(r)
    if np.any(r_flat < 0.0):
        raise ValueError("Radial coordinate must be non-negative.")

    rho = (2.0 / state.n) * r_flat
    lag, lag_log_scale = _laguerre_recurrence(state.radial_degree, float(state.laguerre_order), rho)

    # xlogy(0, 0) == 0 keeps the l = 0 limit finite at the origin
    log_env = state.log_radial_norm - 0.5 * rho + special.xlogy(state.l, rho) + lag_log_scale
    out = np.exp(log_env) * lag
    _check_finite(out, "radial_wavefunction")
    return out.reshape(shape)


def theta_factor(state: QuantumState, theta: ArrayLike) -> ArrayR:
    """Θ_l|m|(θ) = √(2π) P̄_l^|m|(cos θ), normalized with the sin θ measure."""
    th, shape = _flat(theta)
    seed = math.exp(state.log_angular_norm) * math.sqrt(2.0 * math.pi)
    out = _normalized_legendre(state.l, state.abs_m, np.cos(th), np.abs(np.sin(th)), seed)
    _check_finite(out, "theta_factor")
    return out.reshape(shape)


def phi_factor(state: QuantumState, phi: ArrayLike) -> ArrayR:
    """Φ_m(φ), normalized on [0, 2π)."""
    ph = np.asarray(phi, dtype=np.float64)
    if state.m == 0:
        return np.full(ph.shape, 1.0 / math.sqrt(2.0 * math.pi))
    if state.m > 0:
        return np.cos(state.m * ph) / math.sqrt(math.pi)
    return np.sin(state.abs_m * ph) / math.sqrt(math.pi)


def angular_wavefunction(state: QuantumState, theta: ArrayLike, phi: ArrayLike) -> ArrayR:
    """Real spherical harmonic Y_lm(θ, φ)."""
    th, ph = np.broadcast_arrays(np.asarray(theta, dtype=np.float64), np.asarray(phi, dtype=np.float64))
    return theta_factor(state, th) * phi_factor(state, ph)


def wavefunction(state: QuantumState, r: ArrayLike, theta: ArrayLike, phi: ArrayLike) -> ArrayR:
    """ψ_nlm(r, θ, φ) = R_nl(r) Y_lm(θ, φ) (real)."""
    r_b, th_b, ph_b = np.broadcast_arrays(
        np.asarray(r, dtype=np.float64),
        np.asarray(theta, dtype=np.float64),
        np.asarray(phi, dtype=np.float64),
    )
    return radial_wavefunction(state, r_b) * angular_wavefunction(state, th_b, ph_b)


def radial_probability_density(state: QuantumState, r: ArrayLike) -> ArrayR:
    """Radial marginal P(r) = r^2 R_nl(r)^2 (integrates to 1 over [0, ∞))."""
    r_arr = np.asarray(r, dtype=np.float64)
    R = radial_wavefunction(state, r_arr)
    return r_arr * r_arr * R * R


def probability_density(state: QuantumState, r: ArrayLike, theta: ArrayLike, phi: ArrayLike) -> ArrayR:
    """ρ(r,θ,φ) = |R_nl(r) Y_lm(θ,φ)|^2 r^2 (spherical sampling density, no sin θ)."""
    r_arr = np.asarray(r, dtype=np.float64)
    psi = wavefunction(state, r_arr, theta, phi)
    return psi * psi * r_arr * r_arr


def wavefunction_sign(state: QuantumState, r: ArrayLike, theta: ArrayLike, phi: ArrayLike) -> ArrayR:
    """Sign of ψ (+1, -1 or 0), e.g. for coloring lobes."""
    return np.sign(wavefunction(state, r, theta, phi))


# -----------------------------------------------------------------------------
# Coordinates
# -----------------------------------------------------------------------------

def spherical_to_cartesian(r: ArrayLike, theta: ArrayLike, phi: ArrayLike) -> ArrayR:
    """Return points (..., 3) for spherical coordinates (θ polar, φ azimuth)."""
    r = np.asarray(r, dtype=np.float64)
    theta = np.asarray(theta, dtype=np.float64)
    phi = np.asarray(phi, dtype=np.float64)
    sin_t = np.sin(theta)
    return np.stack(
        [r * sin_t * np.cos(phi), r * sin_t * np.sin(phi), r * np.cos(theta)],
        axis=-1,
    )


def cartesian_to_spherical(points: ArrayLike) -> Tuple[ArrayR, ArrayR, ArrayR]:
    """Return (r, θ, φ) for points (..., 3); φ in [0, 2π), angles 0 at the origin."""
    p = np.asarray(points, dtype=np.float64)
    x, y, z = p[..., 0], p[..., 1], p[..., 2]
    r = np.sqrt(x * x + y * y + z * z)
    r_safe = np.where(r > 0.0, r, 1.0)
    theta = np.where(r > 0.0, np.arccos(np.clip(z / r_safe, -1.0, 1.0)), 0.0)
    phi = np.mod(np.arctan2(y, x), 2.0 * np.pi)
    return r, theta, phi


def density_at_points(state: QuantumState, points: ArrayLike) -> ArrayR:
    """|ψ|^2 at Cartesian points (..., 3) (volume density, no Jacobian)."""
    r, theta, phi = cartesian_to_spherical(points)
    psi = wavefunction(state, r, theta, phi)
    return psi * psi


if __name__ == "__main__":
    from scipy import integrate

    print("Hydrogen wave function sanity check")
    for qn in (QuantumState(1, 0, 0), QuantumState(3, 1, -1), QuantumState(20, 7, 3)):
        r = np.linspace(0.0, 6.0 * qn.mean_radius + 20.0, 20001)
        norm = float(integrate.simpson(radial_probability_density(qn, r), x=r))
        print(f"  {qn.label:>14}  E={qn.energy:+.6f}  <r>={qn.mean_radius:.1f}  ∫r²R²dr={norm:.8f}")
