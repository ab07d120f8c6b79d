import numpy as np
import pytest

from poselink.core.filters.one_euro import (
    LandmarkFilterBank,
    OneEuroFilter,
    OneEuroFilter3,
    smoothing_alpha,
)


def test_first_value_passes_through():
    f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    assert f.filter(3.25, 0.0) == 3.25


def test_constant_input_stays_constant():
    f = OneEuroFilter()
    for i in range(20):
        assert f.filter(2.0, i / 30.0) == pytest.approx(2.0)


def test_step_converges_monotonically():
    f = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    f.filter(0.0, 0.0)
    values = [f.filter(1.0, i / 60.0) for i in range(1, 300)]
    assert all(0.0 < v <= 1.0 for v in values)
    assert all(b >= a for a, b in zip(values, values[1:]))
    assert values[-1] == pytest.approx(1.0, abs=1e-3)


def test_beta_reduces_lag():
    slow = OneEuroFilter(min_cutoff=1.0, beta=0.0)
    fast = OneEuroFilter(min_cutoff=1.0, beta=1.0)
    for f in (slow, fast):
        f.filter(0.0, 0.0)
    for i in range(1, 10):
        a = slow.filter(i * 0.1, i / 60.0)
        b = fast.filter(i * 0.1, i / 60.0)
    assert b > a


def test_deterministic_for_same_timestamps():
    samples = [(0.0, 0.0), (0.4, 0.016), (0.1, 0.033), (0.9, 0.05)]
    a, b = OneEuroFilter(beta=0.5), OneEuroFilter(beta=0.5)
    assert [a(v, t) for v, t in samples] == [b(v, t) for v, t in samples]


def test_repeated_timestamp_does_not_divide_by_zero():
    f = OneEuroFilter()
    f.filter(0.0, 1.0)
    assert np.isfinite(f.filter(1.0, 1.0))


@pytest.mark.parametrize(
    "kwargs",
    [{"min_cutoff": 0.0}, {"min_cutoff": -1.0}, {"beta": -0.1}, {"derivative_cutoff": 0.0}],
)
def test_invalid_parameters(kwargs):
    with pytest.raises(ValueError):
        OneEuroFilter(**kwargs)


def test_update_params_keeps_state():
    f = OneEuroFilter()
    f.filter(1.0, 0.0)
    f.update_params(beta=0.2)
    assert f.beta == 0.2
    assert f.state.initialized
    with pytest.raises(ValueError):
        f.update_params(min_cutoff=0)


def test_reset_restarts_from_raw():
    f = OneEuroFilter()
    f.filter(0.0, 0.0)
    f.filter(1.0, 0.1)
    f.reset()
    assert f.filter(5.0, 0.2) == 5.0


def test_smoothing_alpha_range():
    assert 0.0 < smoothing_alpha(1 / 60, 1.0) < 1.0
    assert smoothing_alpha(1.0, 1000.0) == pytest.approx(1.0, abs=1e-3)


def test_vector_filter_is_per_axis():
    f = OneEuroFilter3()
    out = f.filter((1.0, 2.0, 3.0), 0.0)
    assert isinstance(out, np.ndarray)
    assert out.tolist() == [1.0, 2.0, 3.0]


def test_landmark_bank_grows_lazily():
    bank = LandmarkFilterBank()
    pts = np.zeros((17, 3))
    assert np.array_equal(bank.filter(pts, 0.0), pts)
    assert len(bank) == 17
    bank.filter(np.ones((33, 3)), 0.1)
    assert len(bank) == 33
    bank.reset()
    assert len(bank) == 0
