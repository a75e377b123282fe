# tests/test_gaussian_2d.py
import sys
import os

# Add parent directory to path so we can import the package from a checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import math

import numpy as np
import torch
import pytest

from em_playground._gaussian_2d import Gaussian2D, Gaussian2DEstimator
from em_playground._numerics import DTYPE, Matrix2x2, Point2D


TEST_POINTS = [
    Point2D(x=1.0, y=2.0),
    Point2D(x=2.0, y=3.0),
    Point2D(x=3.0, y=4.0),
    Point2D(x=1.5, y=2.3),  # break perfect correlation
    Point2D(x=2.5, y=3.7),
]


def _random_seed():
    """Generate a random seed between 1 and 1000."""
    return np.random.default_rng().integers(1, 1001)


def _assert_positive_definite(sigma):
    assert sigma.xx > 0 and sigma.yy > 0
    assert sigma.xx * sigma.yy - sigma.xy ** 2 > 0
    corr = sigma.xy / math.sqrt(sigma.xx * sigma.yy)
    assert -1.0 <= corr <= 1.0


def _torch_negative_log_likelihood(X, mu_x, mu_y, s_xx, s_xy, s_yy):
    """Reference NLL with the five free parameters as autograd leaves."""
    mu = torch.stack([mu_x, mu_y])
    S = torch.stack([torch.stack([s_xx, s_xy]), torch.stack([s_xy, s_yy])])
    mvn = torch.distributions.MultivariateNormal(loc=mu, covariance_matrix=S)
    return -mvn.log_prob(X).sum()


def test_single_point_converges_to_point():
    """A single observation pins the mean and leaves the covariance at the floor."""
    estimator = Gaussian2DEstimator([Point2D(x=1.0, y=2.0)])
    state = estimator.fit_with_gradient_descent()

    assert state.converged
    assert state.gaussian.mu.x == pytest.approx(1.0, abs=0.1)
    assert state.gaussian.mu.y == pytest.approx(2.0, abs=0.1)
    assert state.gaussian.sigma.xx >= 0.01
    assert state.gaussian.sigma.yy >= 0.01
    _assert_positive_definite(state.gaussian.sigma)


def test_gradients_match_autograd():
    rng = np.random.RandomState(_random_seed())
    X_np = rng.randn(40, 2) @ np.array([[1.5, 0.0], [0.8, 0.6]]) + np.array([2.0, -1.0])
    estimator = Gaussian2DEstimator(X_np)

    gaussian = Gaussian2D(mu=Point2D(x=0.5, y=0.2), sigma=Matrix2x2(xx=1.3, xy=0.4, yy=0.9))
    grads = estimator.calculate_gradients(gaussian)

    params = [
        torch.tensor(v, dtype=DTYPE, requires_grad=True)
        for v in (gaussian.mu.x, gaussian.mu.y, gaussian.sigma.xx, gaussian.sigma.xy, gaussian.sigma.yy)
    ]
    nll = _torch_negative_log_likelihood(torch.from_numpy(X_np), *params)
    nll.backward()
    expected = [p.grad.item() for p in params]

    ours = [grads.mu_grad.x, grads.mu_grad.y, grads.sigma_grad.xx, grads.sigma_grad.xy, grads.sigma_grad.yy]
    assert ours == pytest.approx(expected, rel=1e-8, abs=1e-8)

    assert estimator.calculate_log_likelihood(gaussian) == pytest.approx(-nll.item(), rel=1e-10)


def test_zero_gradients_for_empty_data_and_singular_covariance():
    empty = Gaussian2DEstimator([])
    g = Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=Matrix2x2(xx=1.0, xy=0.0, yy=1.0))
    grads = empty.calculate_gradients(g)
    assert (grads.mu_grad.x, grads.mu_grad.y) == (0.0, 0.0)
    assert (grads.sigma_grad.xx, grads.sigma_grad.xy, grads.sigma_grad.yy) == (0.0, 0.0, 0.0)

    estimator = Gaussian2DEstimator(TEST_POINTS)
    singular = Gaussian2D(mu=Point2D(x=2.0, y=3.0), sigma=Matrix2x2(xx=0.0, xy=0.0, yy=0.0))
    grads = estimator.calculate_gradients(singular)
    assert (grads.sigma_grad.xx, grads.sigma_grad.xy, grads.sigma_grad.yy) == (0.0, 0.0, 0.0)


def test_singular_covariance_log_likelihood_is_floored():
    estimator = Gaussian2DEstimator(TEST_POINTS)
    singular = Gaussian2D(mu=Point2D(x=2.0, y=3.0), sigma=Matrix2x2(xx=1.0, xy=1.0, yy=1.0))
    ll = estimator.calculate_log_likelihood(singular)
    assert ll == pytest.approx(len(TEST_POINTS) * math.log(1e-100))
    assert Gaussian2DEstimator([]).calculate_log_likelihood(singular) == 0.0


@pytest.mark.parametrize("learning_rate", [1e-3, 1e-2, 0.5, 5.0])
@pytest.mark.parametrize("sigma", [
    Matrix2x2(xx=1.0, xy=0.0, yy=1.0),
    Matrix2x2(xx=0.001, xy=0.0001, yy=0.001),
    Matrix2x2(xx=0.0, xy=0.0, yy=0.0),
    Matrix2x2(xx=1.0, xy=0.999, yy=1.0),
])
def test_gradient_descent_step_keeps_covariance_positive_definite(learning_rate, sigma):
    estimator = Gaussian2DEstimator(TEST_POINTS)
    gaussian = Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=sigma)

    for _ in range(5):
        gaussian = estimator.gradient_descent_step(gaussian, learning_rate)
        _assert_positive_definite(gaussian.sigma)
        assert math.isfinite(gaussian.log_likelihood)


def test_single_step_agrees_with_gradient_descent_step():
    estimator = Gaussian2DEstimator(TEST_POINTS)
    gaussian = Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=Matrix2x2(xx=1.0, xy=0.0, yy=1.0))

    result = estimator.single_gradient_descent_step(gaussian, 0.01)
    direct = estimator.gradient_descent_step(gaussian, 0.01)
    assert result.gaussian == direct
    assert result.log_likelihood == direct.log_likelihood


def test_small_steps_increase_likelihood():
    estimator = Gaussian2DEstimator(TEST_POINTS)
    start = Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=Matrix2x2(xx=1.0, xy=0.0, yy=1.0))
    state = estimator.fit_with_gradient_descent(start, learning_rate=0.001, max_iter=20)

    lls = [h.log_likelihood for h in state.history]
    assert lls[1] > lls[0]
    assert lls[-1] > lls[0]


def test_fit_history_bookkeeping():
    estimator = Gaussian2DEstimator(TEST_POINTS, max_iter=30)
    start = Gaussian2D(mu=Point2D(x=0.5, y=0.5), sigma=Matrix2x2(xx=2.0, xy=0.0, yy=2.0), log_likelihood=123.0)
    state = estimator.fit_with_gradient_descent(start, learning_rate=0.001)

    assert len(state.history) == state.iteration + 1
    assert state.iteration <= 30
    first = state.history[0]
    assert first.iteration == 0
    assert first.gaussian.mu == start.mu
    assert first.gaussian.sigma == start.sigma
    # the stale likelihood on the initial guess is recomputed
    assert first.log_likelihood == pytest.approx(estimator.calculate_log_likelihood(start))

    last = state.history[-1]
    assert last.gaussian == state.gaussian
    assert last.log_likelihood == state.log_likelihood
    for h in state.history:
        _assert_positive_definite(h.gaussian.sigma)


def test_fit_with_gradient_descent_overrides():
    estimator = Gaussian2DEstimator(TEST_POINTS, tol=1e-12, max_iter=500)
    state = estimator.fit_with_gradient_descent(learning_rate=0.001, tol=1e-12, max_iter=3)
    assert state.iteration == 3
    assert not state.converged
    with pytest.raises(ValueError):
        estimator.fit_with_gradient_descent(learning_rate=0.0)


def test_fit_gaussian_is_closed_form_mle():
    rng = np.random.RandomState(_random_seed())
    X = rng.randn(100, 2) * np.array([2.0, 0.5]) + np.array([1.0, -3.0])
    estimator = Gaussian2DEstimator(X)
    g = estimator.fit_gaussian()

    mean = X.mean(axis=0)
    cov = np.cov(X.T, bias=True)
    assert (g.mu.x, g.mu.y) == pytest.approx(tuple(mean))
    assert (g.sigma.xx, g.sigma.xy, g.sigma.yy) == pytest.approx((cov[0, 0], cov[0, 1], cov[1, 1]))
    assert g.log_likelihood == pytest.approx(estimator.calculate_log_likelihood(g))

    # the MLE is a stationary point of the likelihood
    grads = estimator.calculate_gradients(g)
    assert [grads.mu_grad.x, grads.mu_grad.y] == pytest.approx([0.0, 0.0], abs=1e-8)
    assert [grads.sigma_grad.xx, grads.sigma_grad.xy, grads.sigma_grad.yy] == pytest.approx([0.0, 0.0, 0.0], abs=1e-6)


def test_gradient_descent_approaches_mle():
    rng = np.random.RandomState(3)
    X = rng.randn(30, 2) + np.array([4.0, -2.0])
    estimator = Gaussian2DEstimator(X, tol=1e-10, max_iter=2000)

    state = estimator.fit_with_gradient_descent(learning_rate=0.005)
    mle = estimator.fit_gaussian()
    assert state.gaussian.mu.x == pytest.approx(mle.mu.x, abs=1e-3)
    assert state.gaussian.mu.y == pytest.approx(mle.mu.y, abs=1e-3)
    assert state.log_likelihood <= mle.log_likelihood + 1e-8


def test_initialize_gaussian():
    estimator = Gaussian2DEstimator(TEST_POINTS)
    g = estimator.initialize_gaussian()
    mean = estimator.calculate_mean()
    assert g.mu == mean
    cov = estimator.calculate_covariance()
    assert g.sigma.xx == pytest.approx(max(0.01, 0.25 * cov.xx))
    assert g.sigma.yy == pytest.approx(max(0.01, 0.25 * cov.yy))
    _assert_positive_definite(g.sigma)

    empty = Gaussian2DEstimator([]).initialize_gaussian()
    assert empty.mu == Point2D(x=0.0, y=0.0)
    assert empty.sigma == Matrix2x2(xx=1.0, xy=0.0, yy=1.0)


def test_sample_covariance_divisors():
    estimator = Gaussian2DEstimator([(0.0, 0.0), (2.0, 2.0)])
    assert estimator.calculate_covariance().xx == pytest.approx(2.0)
    assert estimator.calculate_covariance(unbiased=False).xx == pytest.approx(1.0)
    assert Gaussian2DEstimator([(1.0, 1.0)]).calculate_covariance().xx == 0.0


def test_input_formats_agree():
    pairs = [(p.x, p.y) for p in TEST_POINTS]
    a = Gaussian2DEstimator(TEST_POINTS).fit_gaussian()
    b = Gaussian2DEstimator(pairs).fit_gaussian()
    c = Gaussian2DEstimator(np.array(pairs)).fit_gaussian()
    assert a == b == c


def test_malformed_shape_raises():
    with pytest.raises(ValueError):
        Gaussian2DEstimator([(1.0, 2.0, 3.0)])
    with pytest.raises(ValueError):
        Gaussian2DEstimator(np.zeros((4, 3)))
    with pytest.raises(ValueError):
        Gaussian2DEstimator([(1.0, float("nan"))])


def test_evaluate_pdf_and_correlation():
    estimator = Gaussian2DEstimator(TEST_POINTS)
    g = Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=Matrix2x2(xx=1.0, xy=0.5, yy=1.0))
    peak = estimator.evaluate_pdf(Point2D(x=0.0, y=0.0), g)
    assert peak == pytest.approx(1.0 / (2 * math.pi * math.sqrt(0.75)))
    assert estimator.correlation(g) == pytest.approx(0.5)
