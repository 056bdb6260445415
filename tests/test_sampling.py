import itertools
import math
from collections.abc import Sequence

import numpy as np
import pytest
from scipy import stats

from density_tables import DensityTableBuilder
from physics import QuantumState
from sampling import Sample, SampleBatch, Sampler, invert_cdf


@pytest.fixture(scope="module")
def builder():
    return DensityTableBuilder()


def _hydrogen_1s_cdf(r):
    return 1.0 - np.exp(-2.0 * r) * (1.0 + 2.0 * r + 2.0 * r * r)


# -----------------------------------------------------------------------------
# Inverse CDF
# -----------------------------------------------------------------------------

def test_invert_cdf_interpolates_and_skips_empty_bins():
    edges = np.array([0.0, 1.0, 2.0, 3.0])
    cdf = np.array([0.0, 0.5, 0.5, 1.0])
    got = invert_cdf(np.array([0.0, 0.25, 0.5, 0.75]), edges, cdf)
    np.testing.assert_allclose(got, [0.0, 0.5, 2.0, 2.5])


def test_invert_cdf_stays_inside_domain():
    edges = np.linspace(0.0, 10.0, 11)
    cdf = np.linspace(0.0, 1.0, 11)
    u = np.random.default_rng(0).random(10_000)
    x = invert_cdf(u, edges, cdf)
    assert np.all((x >= 0.0) & (x <= 10.0))
    np.testing.assert_allclose(x, 10.0 * u, atol=1e-12)


# -----------------------------------------------------------------------------
# Distribution checks
# -----------------------------------------------------------------------------

def test_1s_radial_distribution(builder):
    table = builder.get_or_build(QuantumState(1, 0, 0))
    batch = Sampler().generate_batch(table, 20_000, rng=12345)
    result = stats.kstest(batch.r, _hydrogen_1s_cdf)
    assert result.pvalue > 1e-4
    assert np.mean(batch.r) == pytest.approx(1.5, abs=0.05)


@pytest.mark.parametrize("state", [QuantumState(1, 0, 0), QuantumState(3, 2, 0), QuantumState(4, 1, 0)])
def test_phi_uniform_for_m_zero(builder, state):
    batch = Sampler().generate_batch(builder.get_or_build(state), 20_000, rng=7)
    result = stats.kstest(batch.phi, "uniform", args=(0.0, 2.0 * math.pi))
    assert result.pvalue > 1e-4


def test_2p_angular_moments(builder):
    sampler = Sampler()
    pz = sampler.generate_batch(builder.get_or_build(QuantumState(2, 1, 0)), 50_000, rng=1)
    px = sampler.generate_batch(builder.get_or_build(QuantumState(2, 1, 1)), 50_000, rng=2)
    py = sampler.generate_batch(builder.get_or_build(QuantumState(2, 1, -1)), 50_000, rng=3)

    # |Y|^2 ∝ cos^2 θ  ->  <cos^2 θ> = 3/5
    assert np.mean(np.cos(pz.theta) ** 2) == pytest.approx(0.6, abs=0.01)
    # |Y|^2 ∝ sin^2 θ  ->  <cos^2 θ> = 1/5
    assert np.mean(np.cos(px.theta) ** 2) == pytest.approx(0.2, abs=0.01)
    # Φ^2 ∝ cos^2 φ (m=+1) or sin^2 φ (m=-1)  ->  <cos 2φ> = ±1/2
    assert np.mean(np.cos(2.0 * px.phi)) == pytest.approx(0.5, abs=0.02)
    assert np.mean(np.cos(2.0 * py.phi)) == pytest.approx(-0.5, abs=0.02)


def test_successive_batches_are_independent(builder):
    table = builder.get_or_build(QuantumState(3, 1, 0))
    rng = np.random.default_rng(99)
    sampler = Sampler()
    a = sampler.generate_batch(table, 10_000, rng)
    b = sampler.generate_batch(table, 10_000, rng)
    assert not np.array_equal(a.points, b.points)
    assert stats.ks_2samp(a.r, b.r).pvalue > 1e-4


@pytest.mark.parametrize("state", [QuantumState(3, 2, 1), QuantumState(6, 0, 0), QuantumState(20, 10, -4)])
def test_almost_no_samples_at_radial_bound(builder, state):
    table = builder.get_or_build(state)
    batch = Sampler().generate_batch(table, 20_000, rng=5)
    assert np.mean(batch.r >= table.r_max) < 1e-3
    assert np.all(batch.r >= 0.0)
    assert np.all((batch.theta >= 0.0) & (batch.theta <= math.pi))


def test_points_match_spherical_coordinates(builder):
    batch = Sampler().generate_batch(builder.get_or_build(QuantumState(3, 2, -2)), 1_000, rng=0)
    np.testing.assert_allclose(np.linalg.norm(batch.points, axis=1), batch.r, rtol=1e-12, atol=1e-12)
    np.testing.assert_allclose(batch.points[:, 2], batch.r * np.cos(batch.theta), atol=1e-12)


# -----------------------------------------------------------------------------
# Workers and streams
# -----------------------------------------------------------------------------

def test_worker_split_is_reproducible(builder):
    table = builder.get_or_build(QuantumState(4, 2, 1))
    sampler = Sampler(workers=4)
    a = sampler.generate_batch(table, 10_001, rng=123)
    b = sampler.generate_batch(table, 10_001, rng=123)
    assert len(a) == 10_001
    np.testing.assert_array_equal(a.points, b.points)


def test_worker_split_matches_distribution(builder):
    table = builder.get_or_build(QuantumState(1, 0, 0))
    batch = Sampler(workers=3).generate_batch(table, 20_000, rng=2024)
    assert stats.kstest(batch.r, _hydrogen_1s_cdf).pvalue > 1e-4


def test_stream_yields_fresh_batches(builder):
    table = builder.get_or_build(QuantumState(2, 0, 0))
    batches = list(itertools.islice(Sampler().stream(table, 500, rng=11), 3))
    assert [len(b) for b in batches] == [500, 500, 500]
    assert not np.array_equal(batches[0].points, batches[1].points)


# -----------------------------------------------------------------------------
# Weights
# -----------------------------------------------------------------------------

def test_sign_weights_follow_lobes(builder):
    batch = Sampler(weight_mode="sign").generate_batch(builder.get_or_build(QuantumState(2, 1, 0)), 5_000, rng=4)
    z = batch.points[:, 2]
    assert set(np.unique(batch.weights)) <= {-1.0, 1.0}
    assert np.all(batch.weights[z > 1e-9] == 1.0)
    assert np.all(batch.weights[z < -1e-9] == -1.0)


def test_density_weights_are_scaled(builder):
    batch = Sampler(weight_mode="density").generate_batch(builder.get_or_build(QuantumState(3, 1, 1)), 5_000, rng=8)
    assert np.all((batch.weights >= 0.0) & (batch.weights <= 1.0))
    assert np.max(batch.weights) > 0.05


def test_no_weights(builder):
    batch = Sampler(weight_mode="none").generate_batch(builder.get_or_build(QuantumState(1, 0, 0)), 100, rng=0)
    assert np.all(batch.weights == 1.0)


@pytest.mark.parametrize("kwargs", [{"weight_mode": "brightness"}, {"workers": 0}])
def test_sampler_rejects_bad_arguments(kwargs):
    with pytest.raises(ValueError):
        Sampler(**kwargs)


def test_negative_count_rejected(builder):
    with pytest.raises(ValueError):
        Sampler().generate_batch(builder.get_or_build(QuantumState(1, 0, 0)), -1)


# -----------------------------------------------------------------------------
# SampleBatch
# -----------------------------------------------------------------------------

def test_sample_batch_is_a_sequence_of_samples(builder):
    batch = Sampler().generate_batch(builder.get_or_build(QuantumState(2, 1, 1)), 10, rng=3)
    assert isinstance(batch, Sequence)
    assert isinstance(batch, SampleBatch)
    assert len(batch) == 10

    first = batch[0]
    assert isinstance(first, Sample)
    assert (first.x, first.y, first.z) == tuple(batch.points[0])
    assert first.weight == batch.weights[0]

    assert len(batch[2:5]) == 3
    assert batch[-1] == batch[9]
    assert len(list(batch)) == 10
    assert batch.extent() == pytest.approx(np.max(np.abs(batch.points)))
