# em_playground/_numerics.py
"""Shared numerics for the 1D / 2D estimation engines.

Everything here is a leaf: scalar Gaussian densities, closed-form 2x2 covariance
algebra, a few descriptive statistics, convergence tests and the 1D seeding
strategies that both the mixture and the k-means engine start from.

Conventions:
- Scalars come in and go out as Python floats.
- Vectorised kernels take float64 tensors; x is (N,), per-component parameters
  are (K,), and the result is (N, K).
- Invalid parameters are never an error. A non-positive sigma gives density 0
  (log-density -inf), a singular covariance gives density 0.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import torch


MIN_SIGMA = 0.01
LOG_FLOOR = 1e-100
SINGULAR_DET = 1e-10
MAX_CORRELATION = 0.99
DTYPE = torch.float64

_LOG_2PI = math.log(2.0 * math.pi)


# ---------------------------
# Value types
# ---------------------------

@dataclass(frozen=True)
class Point2D:
    x: float
    y: float


@dataclass(frozen=True)
class Matrix2x2:
    """Symmetric 2x2 matrix [[xx, xy], [xy, yy]]."""
    xx: float
    xy: float
    yy: float


@dataclass(frozen=True)
class BasicStats:
    mean: float
    variance: float
    std: float
    min: float
    max: float
    range: float


# ---------------------------
# Input coercion
# ---------------------------

def as_tensor_1d(data, name: str = "data") -> torch.Tensor:
    """Copy a 1D sequence of finite numbers into a float64 tensor."""
    arr = np.asarray(data, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional, got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValueError(f"{name} must contain only finite values")
    return torch.from_numpy(arr.copy())


# ---------------------------
# Scalar Gaussian
# ---------------------------

def gaussian_pdf(x: float, mu: float, sigma: float) -> float:
    """N(x | mu, sigma^2); 0.0 for sigma <= 0."""
    if sigma <= 0:
        return 0.0
    coefficient = 1.0 / (sigma * math.sqrt(2.0 * math.pi))
    exponent = -((x - mu) ** 2) / (2.0 * sigma * sigma)
    return coefficient * math.exp(exponent)


def log_gaussian_pdf(x: float, mu: float, sigma: float) -> float:
    if sigma <= 0:
        return float("-inf")
    return -math.log(sigma) - 0.5 * _LOG_2PI - ((x - mu) ** 2) / (2.0 * sigma * sigma)


def safe_log(x: float, min_value: float = LOG_FLOOR) -> float:
    return math.log(max(x, min_value))


def log_gaussian_pdf_tensor(x: torch.Tensor, mu: torch.Tensor, sigma: torch.Tensor) -> torch.Tensor:
    """Batched log N(x_n | mu_k, sigma_k^2), shape (N, K).

    Columns with sigma <= 0 are -inf.
    """
    valid = sigma > 0
    safe_sigma = torch.where(valid, sigma, torch.ones_like(sigma))  # (K,)

    diff = x.unsqueeze(1) - mu.unsqueeze(0)          # (N,K)
    z = diff / safe_sigma.unsqueeze(0)               # (N,K)
    log_prob = -0.5 * (_LOG_2PI + z * z) - torch.log(safe_sigma).unsqueeze(0)

    return torch.where(valid.unsqueeze(0), log_prob, torch.full_like(log_prob, float("-inf")))


# ---------------------------
# 2x2 covariance algebra
# ---------------------------

def determinant_2x2(m: Matrix2x2) -> float:
    return m.xx * m.yy - m.xy * m.xy


def inverse_2x2(m: Matrix2x2) -> Optional[Matrix2x2]:
    """Inverse of a symmetric 2x2 matrix, or None when it is (nearly) singular."""
    det = determinant_2x2(m)
    if abs(det) < SINGULAR_DET:
        return None
    return Matrix2x2(xx=m.yy / det, xy=-m.xy / det, yy=m.xx / det)


def is_positive_definite_2x2(m: Matrix2x2) -> bool:
    return m.xx > 0 and m.yy > 0 and determinant_2x2(m) > 0


def regularize_covariance_2x2(
    m: Matrix2x2,
    min_diagonal: float = MIN_SIGMA,
    min_determinant: float = 1e-6,
) -> Matrix2x2:
    """Project a symmetric matrix back onto the positive-definite cone.

    Diagonals are clamped to ``min_diagonal``. If the determinant is then still
    not above ``min_determinant`` the off-diagonal is shrunk so that
    |corr| <= MAX_CORRELATION, which makes det >= (1 - 0.99^2) * xx * yy > 0.
    """
    xx = m.xx if math.isfinite(m.xx) else min_diagonal
    yy = m.yy if math.isfinite(m.yy) else min_diagonal
    xy = m.xy if math.isfinite(m.xy) else 0.0

    xx = max(xx, min_diagonal)
    yy = max(yy, min_diagonal)

    if xx * yy - xy * xy <= min_determinant:
        max_cov = MAX_CORRELATION * math.sqrt(xx * yy)
        xy = max(-max_cov, min(max_cov, xy))

    return Matrix2x2(xx=xx, xy=xy, yy=yy)


def matrix_vector_multiply_2x2(m: Matrix2x2, v: Point2D) -> Point2D:
    return Point2D(x=m.xx * v.x + m.xy * v.y, y=m.xy * v.x + m.yy * v.y)


def quadratic_form_2x2(m: Matrix2x2, v: Point2D) -> float:
    """v^T M v."""
    return v.x * v.x * m.xx + 2.0 * v.x * v.y * m.xy + v.y * v.y * m.yy


def correlation_2x2(m: Matrix2x2) -> float:
    denominator = math.sqrt(m.xx * m.yy) if m.xx > 0 and m.yy > 0 else 0.0
    if denominator <= 0:
        return 0.0
    return max(-1.0, min(1.0, m.xy / denominator))


def log_gaussian_pdf_2d(point: Point2D, mu: Point2D, sigma: Matrix2x2) -> float:
    inv = inverse_2x2(sigma)
    det = determinant_2x2(sigma)
    if inv is None or det <= 0:
        return float("-inf")
    d = Point2D(x=point.x - mu.x, y=point.y - mu.y)
    mahal = quadratic_form_2x2(inv, d)
    return -_LOG_2PI - 0.5 * math.log(det) - 0.5 * mahal


def gaussian_pdf_2d(point: Point2D, mu: Point2D, sigma: Matrix2x2) -> float:
    """Bivariate normal density; 0.0 for a singular or indefinite covariance."""
    log_p = log_gaussian_pdf_2d(point, mu, sigma)
    if log_p == float("-inf"):
        return 0.0
    return math.exp(log_p)


# ---------------------------
# Statistics
# ---------------------------

def basic_stats(x: torch.Tensor) -> BasicStats:
    """Mean, sample variance (n-1 for n > 1) and range of a 1D tensor."""
    n = x.numel()
    if n == 0:
        return BasicStats(mean=0.0, variance=0.0, std=0.0, min=0.0, max=0.0, range=0.0)

    mean = float(x.mean().item())
    divisor = n - 1 if n > 1 else n
    variance = float(((x - mean) ** 2).sum().item()) / divisor
    lo = float(x.min().item())
    hi = float(x.max().item())
    return BasicStats(mean=mean, variance=variance, std=math.sqrt(variance), min=lo, max=hi, range=hi - lo)


def mean_2d(points: torch.Tensor) -> Point2D:
    """Mean of an (N, 2) tensor; the origin for no points."""
    if points.shape[0] == 0:
        return Point2D(x=0.0, y=0.0)
    m = points.mean(dim=0)
    return Point2D(x=float(m[0].item()), y=float(m[1].item()))


# ---------------------------
# Convergence
# ---------------------------

def has_converged_absolute(current: float, previous: float, tol: float) -> bool:
    return abs(current - previous) < tol


def has_converged_array(current: Sequence[float], previous: Sequence[float], tol: float) -> bool:
    if len(current) != len(previous):
        return False
    return all(has_converged_absolute(c, p, tol) for c, p in zip(current, previous))


# ---------------------------
# 1D seeding
# ---------------------------

def uniform_initialization_1d(x: torch.Tensor, k: int) -> List[float]:
    """k points evenly spaced strictly inside [min, max]."""
    if x.numel() == 0 or k <= 0:
        return []
    stats = basic_stats(x)
    if stats.range == 0:
        return [stats.min] * k
    return [stats.min + stats.range * (i + 1) / (k + 1) for i in range(k)]


def quantile_initialization_1d(x: torch.Tensor, k: int) -> List[float]:
    """k evenly spaced percentiles, (i + 1) / (k + 1)."""
    if x.numel() == 0 or k <= 0:
        return []
    q = torch.tensor([(i + 1) / (k + 1) for i in range(k)], dtype=x.dtype)
    return [float(v) for v in torch.quantile(x, q).tolist()]


@torch.no_grad()
def kmeans_plus_plus_1d(x: torch.Tensor, k: int) -> List[float]:
    """k-means++ seeding on 1D data, returned sorted ascending.

    When every remaining squared distance is zero (duplicated data) the rest of
    the centres are placed evenly across [min, max].
    """
    n = x.numel()
    if n == 0 or k <= 0:
        return []

    lo = float(x.min().item())
    hi = float(x.max().item())
    if hi == lo:
        return [lo] * k

    i0 = torch.randint(0, n, (1,)).item()
    centres = [float(x[i0].item())]
    closest_d2 = (x - centres[0]) ** 2  # (N,)

    for i in range(1, k):
        total = closest_d2.sum()
        if total.item() == 0:
            centres.append(lo + (hi - lo) * i / (k - 1))
            continue
        idx = torch.multinomial(closest_d2 / total, 1).item()
        centres.append(float(x[idx].item()))
        closest_d2 = torch.minimum(closest_d2, (x - centres[-1]) ** 2)

    return sorted(centres)
