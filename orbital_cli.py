"""
orbital_cli.py — Command-line entry point for the hydrogen orbital cloud.

  orbital-cloud --n 3 --l 2 --m 1                 # open the viewer
  orbital-cloud --n 4 --l 1 --m 0 --headless --frames 5 --export cloud.npz
  orbital-cloud                                    # prompt for n, l, m

Missing quantum numbers are read interactively; invalid triples are
reported with the violated bound and asked for again.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

import argparse
import logging
import sys
import time

import numpy as np

from density_tables import DomainComputationFailure
from model import ParticleCloudFeed, SimulationState
from physics import QuantumState, ValidationError, validate_and_construct
from sampling import Sampler, SampleBatch

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Prompt
# -----------------------------------------------------------------------------

def _read_int(name: str, input_fn: Callable[[str], str], output_fn: Callable[[str], None]) -> int:
    while True:
        raw = input_fn(f"{name} = ").strip()
        try:
            return int(raw)
        except ValueError:
            output_fn(f"  '{raw}' is not an integer, try again.")


def prompt_quantum_numbers(
    n: Optional[int] = None,
    l: Optional[int] = None,
    m: Optional[int] = None,
    *,
    input_fn: Optional[Callable[[str], str]] = None,
    output_fn: Optional[Callable[[str], None]] = None,
) -> QuantumState:
    """Ask for whichever of n, l, m is missing until the triple is valid.

    After a rejected triple all three numbers are asked for again.
    EOFError from input_fn propagates.
    """
    input_fn = input_fn or input
    output_fn = output_fn or print
    given: Dict[str, Optional[int]] = {"n": n, "l": l, "m": m}
    while True:
        values = {
            name: (val if val is not None else _read_int(name, input_fn, output_fn))
            for name, val in given.items()
        }
        try:
            return validate_and_construct(values["n"], values["l"], values["m"])
        except ValidationError as e:
            output_fn(f"  invalid quantum numbers: {e} (requires {e.bound})")
            given = {"n": None, "l": None, "m": None}


# -----------------------------------------------------------------------------
# Headless runner
# -----------------------------------------------------------------------------

def batch_statistics(batch: SampleBatch, r_max: float) -> Dict[str, float]:
    r = batch.r
    return {
        "count": float(len(batch)),
        "mean_r": float(np.mean(r)) if len(batch) else float("nan"),
        "expected_mean_r": float(batch.state.mean_radius),
        "fraction_at_r_max": float(np.mean(r >= r_max)) if len(batch) else 0.0,
        "extent": batch.extent(),
    }


def run_headless(
    state: QuantumState,
    *,
    samples: int,
    frames: int = 1,
    weight_mode: str = "density",
    workers: int = 1,
    seed: Optional[int] = None,
    export: Optional[str] = None,
    output_fn: Callable[[str], None] = print,
) -> SampleBatch:
    """Publish state, draw `frames` batches and report statistics for each.

    Returns the last batch (written to `export` as .npz when given).
    """
    simulation = SimulationState()
    simulation.replace(state)
    feed = ParticleCloudFeed(
        simulation,
        Sampler(weight_mode=weight_mode, workers=workers),  # type: ignore[arg-type]
        batch_size=samples,
        rng=seed,
    )
    _, table = simulation.current()
    output_fn(feed.describe())
    output_fn(f"  table: {table.summary()}")

    batch: Optional[SampleBatch] = None
    for frame in range(max(1, int(frames))):
        t0 = time.perf_counter()
        batch = feed.poll(force=True)
        assert batch is not None
        stats = batch_statistics(batch, table.r_max)
        output_fn(
            f"  frame {frame}: {int(stats['count'])} samples  "
            f"mean r={stats['mean_r']:.3f} (expected {stats['expected_mean_r']:.3f})  "
            f"r>=r_max: {stats['fraction_at_r_max']:.2e}  "
            f"[{time.perf_counter() - t0:.3f}s]"
        )

    assert batch is not None
    if export:
        np.savez(
            export,
            points=batch.points,
            r=batch.r,
            theta=batch.theta,
            phi=batch.phi,
            weights=batch.weights,
            quantum_numbers=np.array([state.n, state.l, state.m], dtype=np.int64),
            r_max=np.float64(table.r_max),
        )
        logger.info(f"Exported {len(batch)} samples to {export}")
        output_fn(f"  exported {len(batch)} samples to {export}")
    return batch


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Sample and view hydrogen orbital probability clouds.")
    p.add_argument("--n", type=int, default=None, help="principal quantum number (n >= 1)")
    p.add_argument("--l", type=int, default=None, help="azimuthal quantum number (0 <= l <= n-1)")
    p.add_argument("--m", type=int, default=None, help="magnetic quantum number (|m| <= l)")
    p.add_argument("--samples", type=int, default=50_000, help="points per batch")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--workers", type=int, default=1, help="threads per batch")
    p.add_argument("--weight", choices=["density", "sign", "none"], default="density")
    p.add_argument("--headless", action="store_true", help="sample and report without opening the viewer")
    p.add_argument("--frames", type=int, default=1, help="batches to draw in headless mode")
    p.add_argument("--export", type=str, default=None, metavar="PATH.npz", help="save the last headless batch")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.samples < 1:
        parser.error("--samples must be >= 1")
    if args.workers < 1:
        parser.error("--workers must be >= 1")
    if args.frames < 1:
        parser.error("--frames must be >= 1")

    given: List[Optional[int]] = [args.n, args.l, args.m]
    try:
        if all(v is not None for v in given):
            state = validate_and_construct(args.n, args.l, args.m)
        else:
            state = prompt_quantum_numbers(args.n, args.l, args.m)
    except ValidationError as e:
        parser.error(f"{e} (requires {e.bound})")
    except (EOFError, KeyboardInterrupt):
        print()
        return 1

    if args.headless:
        try:
            run_headless(
                state,
                samples=args.samples,
                frames=args.frames,
                weight_mode=args.weight,
                workers=args.workers,
                seed=args.seed,
                export=args.export,
            )
        except DomainComputationFailure as e:
            logger.error(f"Could not build density table: {e}")
            return 1
        return 0

    try:
        simulation = SimulationState(initial=state)
    except DomainComputationFailure as e:
        logger.error(f"Could not build density table: {e}")
        return 1

    import gui_app

    return gui_app.main(
        state,
        simulation=simulation,
        samples=args.samples,
        weight_mode=args.weight,
        workers=args.workers,
        seed=args.seed,
    )


if __name__ == "__main__":
    sys.exit(main())
