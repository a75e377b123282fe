# em_playground/_gaussian_2d.py
"""Single bivariate Gaussian: closed-form MLE and gradient descent.

Log-likelihood over N points (Bishop, PRML 2.118):

    log L = -N log(2 pi) - N/2 log|S| - 1/2 sum_n (x_n - mu)^T S^{-1} (x_n - mu)

Gradient descent works on the negative log-likelihood with respect to the five
free parameters (mu_x, mu_y, s_xx, s_xy, s_yy). Because s_xy appears twice in
the symmetric matrix, its derivative is twice the (x, y) entry of the matrix
gradient.

Every operation that produces a covariance projects it back onto the
positive-definite cone (diagonals >= 0.01, |corr| <= 0.99 when needed).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np
import torch

from em_playground._numerics import (
    DTYPE,
    LOG_FLOOR,
    MIN_SIGMA,
    Matrix2x2,
    Point2D,
    correlation_2x2,
    determinant_2x2,
    gaussian_pdf_2d,
    has_converged_absolute,
    inverse_2x2,
    mean_2d,
    regularize_covariance_2x2,
)


INITIAL_COVARIANCE_SCALE = 0.25
# gradients are summed over points, so the step scales with N
DEFAULT_LEARNING_RATE = 1e-3


@dataclass(frozen=True)
class Gaussian2D:
    mu: Point2D
    sigma: Matrix2x2
    log_likelihood: float = 0.0


@dataclass(frozen=True)
class Gaussian2DGradients:
    mu_grad: Point2D
    sigma_grad: Matrix2x2


@dataclass(frozen=True)
class GradientStepResult:
    gaussian: Gaussian2D
    log_likelihood: float


@dataclass(frozen=True)
class Gaussian2DHistoryStep:
    gaussian: Gaussian2D
    iteration: int
    log_likelihood: float


@dataclass(frozen=True)
class Gaussian2DState:
    gaussian: Gaussian2D
    iteration: int
    log_likelihood: float
    converged: bool
    history: Tuple[Gaussian2DHistoryStep, ...]


_ZERO_GRADIENTS = Gaussian2DGradients(
    mu_grad=Point2D(x=0.0, y=0.0),
    sigma_grad=Matrix2x2(xx=0.0, xy=0.0, yy=0.0),
)


def _as_points(data) -> torch.Tensor:
    """(N, 2) float64 tensor from Point2D objects, (x, y) pairs or an array."""
    if isinstance(data, torch.Tensor):
        data = data.detach().cpu().numpy()
    if not isinstance(data, np.ndarray):
        data = [(p.x, p.y) if isinstance(p, Point2D) else p for p in data]

    arr = np.asarray(data, dtype=np.float64)
    if arr.size == 0:
        return torch.zeros((0, 2), dtype=DTYPE)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"2D data must have shape (N, 2), got {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValueError("2D data must contain only finite values")
    return torch.from_numpy(arr.copy())


class Gaussian2DEstimator:
    """Fits one 2D Gaussian to a fixed point set."""

    def __init__(self, data, tol: float = 1e-6, max_iter: int = 100, verbose: int = 0) -> None:
        if tol < 0:
            raise ValueError("tol must be non-negative")
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")

        self._X = _as_points(data)
        self.tol = tol
        self.max_iter = max_iter
        self.verbose = verbose

    @property
    def n_samples(self) -> int:
        return int(self._X.shape[0])

    # -----------------------
    # Sample statistics
    # -----------------------

    def calculate_mean(self) -> Point2D:
        return mean_2d(self._X)

    @torch.no_grad()
    def calculate_covariance(self, mu: Optional[Point2D] = None, unbiased: bool = True) -> Matrix2x2:
        """Sample covariance around mu (data mean by default).

        ``unbiased`` divides by N - 1 when N > 1, otherwise by N.
        """
        N = self.n_samples
        if N == 0:
            return Matrix2x2(xx=1.0, xy=0.0, yy=1.0)

        mean = mu if mu is not None else self.calculate_mean()
        dx = self._X[:, 0] - mean.x
        dy = self._X[:, 1] - mean.y
        divisor = N - 1 if (unbiased and N > 1) else N

        return Matrix2x2(
            xx=float((dx * dx).sum().item()) / divisor,
            xy=float((dx * dy).sum().item()) / divisor,
            yy=float((dy * dy).sum().item()) / divisor,
        )

    # -----------------------
    # Densities and likelihood
    # -----------------------

    def evaluate_pdf(self, point: Point2D, gaussian: Gaussian2D) -> float:
        return gaussian_pdf_2d(point, gaussian.mu, gaussian.sigma)

    @torch.no_grad()
    def calculate_log_likelihood(self, gaussian: Gaussian2D) -> float:
        """Sum of log densities, each floored at log(1e-100).

        A singular or indefinite covariance scores the floor for every point.
        """
        N = self.n_samples
        if N == 0:
            return 0.0

        log_floor = math.log(LOG_FLOOR)
        inv = inverse_2x2(gaussian.sigma)
        det = determinant_2x2(gaussian.sigma)
        if inv is None or det <= 0:
            return N * log_floor

        dx = self._X[:, 0] - gaussian.mu.x
        dy = self._X[:, 1] - gaussian.mu.y
        mahal = dx * dx * inv.xx + 2.0 * dx * dy * inv.xy + dy * dy * inv.yy  # (N,)
        log_prob = -math.log(2.0 * math.pi) - 0.5 * math.log(det) - 0.5 * mahal

        return float(log_prob.clamp_min(log_floor).sum().item())

    def _with_log_likelihood(self, mu: Point2D, sigma: Matrix2x2) -> Gaussian2D:
        g = Gaussian2D(mu=mu, sigma=sigma)
        return replace(g, log_likelihood=self.calculate_log_likelihood(g))

    # -----------------------
    # Closed form
    # -----------------------

    def initialize_gaussian(self) -> Gaussian2D:
        """Data mean with a shrunken (x0.25) sample covariance as a starting guess."""
        if self.n_samples == 0:
            return Gaussian2D(mu=Point2D(x=0.0, y=0.0), sigma=Matrix2x2(xx=1.0, xy=0.0, yy=1.0))

        mu = self.calculate_mean()
        cov = self.calculate_covariance(mu)
        s = INITIAL_COVARIANCE_SCALE
        sigma = regularize_covariance_2x2(
            Matrix2x2(xx=max(MIN_SIGMA, cov.xx * s), xy=cov.xy * s, yy=max(MIN_SIGMA, cov.yy * s))
        )
        return self._with_log_likelihood(mu, sigma)

    def fit_gaussian(self) -> Gaussian2D:
        """Closed-form maximum-likelihood fit: data mean and biased covariance."""
        mu = self.calculate_mean()
        sigma = regularize_covariance_2x2(self.calculate_covariance(mu, unbiased=False))
        return self._with_log_likelihood(mu, sigma)

    # -----------------------
    # Gradient descent
    # -----------------------

    @torch.no_grad()
    def calculate_gradients(self, gaussian: Gaussian2D) -> Gaussian2DGradients:
        """Gradient of the negative log-likelihood.

        d(-log L)/d mu    = -S^{-1} sum_n d_n
        d(-log L)/d S     =  N/2 S^{-1} - 1/2 sum_n v_n v_n^T,   v_n = S^{-1} d_n
        d(-log L)/d s_xy  =  2 * [d(-log L)/d S]_xy
        """
        N = self.n_samples
        if N == 0:
            return _ZERO_GRADIENTS
        inv = inverse_2x2(gaussian.sigma)
        if inv is None:
            return _ZERO_GRADIENTS

        dx = self._X[:, 0] - gaussian.mu.x  # (N,)
        dy = self._X[:, 1] - gaussian.mu.y
        vx = inv.xx * dx + inv.xy * dy
        vy = inv.xy * dx + inv.yy * dy

        mu_grad = Point2D(x=-float(vx.sum().item()), y=-float(vy.sum().item()))
        sigma_grad = Matrix2x2(
            xx=0.5 * N * inv.xx - 0.5 * float((vx * vx).sum().item()),
            xy=N * inv.xy - float((vx * vy).sum().item()),
            yy=0.5 * N * inv.yy - 0.5 * float((vy * vy).sum().item()),
        )
        return Gaussian2DGradients(mu_grad=mu_grad, sigma_grad=sigma_grad)

    def gradient_descent_step(self, gaussian: Gaussian2D, learning_rate: float = DEFAULT_LEARNING_RATE) -> Gaussian2D:
        """theta <- theta - lr * grad, then projection onto the PD cone."""
        g = self.calculate_gradients(gaussian)
        mu = Point2D(
            x=gaussian.mu.x - learning_rate * g.mu_grad.x,
            y=gaussian.mu.y - learning_rate * g.mu_grad.y,
        )
        sigma = regularize_covariance_2x2(
            Matrix2x2(
                xx=gaussian.sigma.xx - learning_rate * g.sigma_grad.xx,
                xy=gaussian.sigma.xy - learning_rate * g.sigma_grad.xy,
                yy=gaussian.sigma.yy - learning_rate * g.sigma_grad.yy,
            )
        )
        return self._with_log_likelihood(mu, sigma)

    def single_gradient_descent_step(self, gaussian: Gaussian2D, learning_rate: float = DEFAULT_LEARNING_RATE) -> GradientStepResult:
        new_gaussian = self.gradient_descent_step(gaussian, learning_rate)
        return GradientStepResult(gaussian=new_gaussian, log_likelihood=new_gaussian.log_likelihood)

    def fit_with_gradient_descent(
        self,
        initial_guess: Optional[Gaussian2D] = None,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        tol: Optional[float] = None,
        max_iter: Optional[int] = None,
    ) -> Gaussian2DState:
        if learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        tol = self.tol if tol is None else tol
        max_iter = self.max_iter if max_iter is None else max_iter

        if initial_guess is None:
            gaussian = self.initialize_gaussian()
        else:
            gaussian = self._with_log_likelihood(initial_guess.mu, regularize_covariance_2x2(initial_guess.sigma))

        history = [Gaussian2DHistoryStep(gaussian=gaussian, iteration=0, log_likelihood=gaussian.log_likelihood)]
        if self.verbose >= 1:
            print(f"Initialization: log-likelihood={gaussian.log_likelihood:.6f}")

        iteration = 0
        converged = False
        while iteration < max_iter:
            step = self.single_gradient_descent_step(gaussian, learning_rate)
            iteration += 1
            history.append(Gaussian2DHistoryStep(gaussian=step.gaussian, iteration=iteration, log_likelihood=step.log_likelihood))
            if self.verbose >= 2:
                print(f"  Iteration {iteration}: log-likelihood={step.log_likelihood:.6f}")

            converged = has_converged_absolute(step.log_likelihood, gaussian.log_likelihood, tol)
            gaussian = step.gaussian
            if converged:
                break

        if self.verbose >= 1:
            status = "converged" if converged else "did not converge"
            print(f"Gradient descent {status} after {iteration} iterations, log-likelihood={gaussian.log_likelihood:.6f}")

        return Gaussian2DState(
            gaussian=gaussian,
            iteration=iteration,
            log_likelihood=gaussian.log_likelihood,
            converged=converged,
            history=tuple(history),
        )

    def correlation(self, gaussian: Gaussian2D) -> float:
        return correlation_2x2(gaussian.sigma)
