# em_playground/_gmm_em.py
"""One-dimensional Gaussian Mixture Model fitted by EM, one step at a time.

The engine keeps only the data and its configuration. Every operation takes the
current component set and returns a new one, so a caller can hold on to any
number of snapshots (the fit history) and move backwards and forwards through
them without recomputation.

Key choices:
- E-step in log space (logsumexp) so responsibilities stay normalised even when
  every density underflows.
- nk smoothing uses nk = resp.sum(0) + 10 * eps(float64), which keeps an emptied
  component finite and the weights summing to one.
- sigma is floored at MIN_SIGMA (0.01) in the M-step and at initialisation.
- The log-likelihood reported by a step is evaluated on the updated components,
  so successive reports are non-decreasing (EM monotonicity).

Initialization options (``init_params``):
- 'quantile':      means at evenly spaced percentiles of the data (default)
- 'random':        means drawn uniformly from [min, max]
- 'k-means++':     k-means++ seeding on the data
- 'scikit_kmeans': cluster centres from sklearn's KMeans
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import torch
from sklearn.cluster import KMeans

from em_playground._numerics import (
    DTYPE,
    LOG_FLOOR,
    MIN_SIGMA,
    as_tensor_1d,
    gaussian_pdf,
    has_converged_absolute,
    kmeans_plus_plus_1d,
    log_gaussian_pdf_tensor,
    quantile_initialization_1d,
)


_INIT_PARAMS = ("quantile", "random", "k-means++", "scikit_kmeans")

Responsibilities = Tuple[Tuple[float, ...], ...]


# ---------------------------
# Value types
# ---------------------------

@dataclass(frozen=True)
class GaussianComponent:
    mu: float
    sigma: float
    pi: float


@dataclass(frozen=True)
class GMMHistoryStep:
    components: Tuple[GaussianComponent, ...]
    iteration: int
    log_likelihood: float
    responsibilities: Optional[Responsibilities] = None


@dataclass(frozen=True)
class GMMState:
    components: Tuple[GaussianComponent, ...]
    data: Tuple[float, ...]
    iteration: int
    log_likelihood: float
    converged: bool
    history: Tuple[GMMHistoryStep, ...]


@dataclass(frozen=True)
class EMStepResult:
    components: Tuple[GaussianComponent, ...]
    responsibilities: Responsibilities
    log_likelihood: float


@dataclass(frozen=True)
class MixtureEvaluation:
    total: float
    component_probs: Tuple[float, ...]
    posteriors: Tuple[float, ...]


# ---------------------------
# Utilities
# ---------------------------

def _check_init_params(init_params: str) -> None:
    if init_params not in _INIT_PARAMS:
        raise ValueError(f"init_params must be one of {_INIT_PARAMS}, got {init_params!r}")


def _nk_eps() -> float:
    return float(10.0 * torch.finfo(DTYPE).eps)


def _params_to_tensors(components: Sequence[GaussianComponent]) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    mu = torch.tensor([c.mu for c in components], dtype=DTYPE)
    sigma = torch.tensor([c.sigma for c in components], dtype=DTYPE)
    pi = torch.tensor([c.pi for c in components], dtype=DTYPE)
    return mu, sigma, pi


def _safe_log(x: torch.Tensor) -> torch.Tensor:
    tiny = torch.finfo(x.dtype).tiny
    return torch.log(x.clamp_min(tiny))


def _to_rows(resp: torch.Tensor) -> Responsibilities:
    return tuple(tuple(row) for row in resp.tolist())


# ---------------------------
# Engine
# ---------------------------

class GaussianMixture1D:
    """EM for a K-component univariate Gaussian mixture over a fixed dataset."""

    def __init__(
        self,
        data: Sequence[float],
        n_components: int = 2,
        tol: float = 1e-6,
        max_iter: int = 100,
        init_params: str = "quantile",
        verbose: int = 0,
    ) -> None:
        _check_init_params(init_params)
        if n_components <= 0:
            raise ValueError("n_components must be positive")
        if tol < 0:
            raise ValueError("tol must be non-negative")
        if max_iter <= 0:
            raise ValueError("max_iter must be positive")

        self._x = as_tensor_1d(data)
        if self._x.numel() == 0:
            raise ValueError("data must contain at least one value")

        self.n_components = n_components
        self.tol = tol
        self.max_iter = max_iter
        self.init_params = init_params
        self.verbose = verbose

    @property
    def data(self) -> Tuple[float, ...]:
        return tuple(self._x.tolist())

    def _check_components(self, components: Sequence[GaussianComponent]) -> None:
        if len(components) != self.n_components:
            raise ValueError(
                f"expected {self.n_components} components, got {len(components)}"
            )

    # -----------------------
    # Initialization
    # -----------------------

    @torch.no_grad()
    def _initial_means(self) -> List[float]:
        x, K = self._x, self.n_components

        if self.init_params == "quantile":
            return quantile_initialization_1d(x, K)

        if self.init_params == "random":
            lo, hi = x.min(), x.max()
            draws = lo + torch.rand(K, dtype=DTYPE) * (hi - lo)
            return sorted(draws.tolist())

        if self.init_params == "k-means++":
            return kmeans_plus_plus_1d(x, K)

        # scikit_kmeans
        n_clusters = min(K, x.numel())
        centres = KMeans(n_clusters=n_clusters, n_init=1).fit(x.numpy().reshape(-1, 1)).cluster_centers_
        means = sorted(float(c) for c in centres.ravel())
        # sklearn cannot place more clusters than samples; repeat the last centre
        means += [means[-1]] * (K - n_clusters)
        return means

    def initialize_components(self) -> List[GaussianComponent]:
        """Means spread over the data, equal weights, sigma = std / K (>= 0.01)."""
        K = self.n_components
        std = float(self._x.std(unbiased=False).item())
        sigma = max(std / K, MIN_SIGMA)
        return [GaussianComponent(mu=m, sigma=sigma, pi=1.0 / K) for m in self._initial_means()]

    # -----------------------
    # Densities and likelihood
    # -----------------------

    def gaussian_pdf(self, x: float, mu: float, sigma: float) -> float:
        return gaussian_pdf(x, mu, sigma)

    @torch.no_grad()
    def _weighted_log_prob(self, components: Sequence[GaussianComponent]) -> torch.Tensor:
        mu, sigma, pi = _params_to_tensors(components)
        log_prob = log_gaussian_pdf_tensor(self._x, mu, sigma)  # (N,K)
        log_weights = torch.where(pi > 0, _safe_log(pi), torch.full_like(pi, float("-inf")))
        return log_prob + log_weights.unsqueeze(0)

    @torch.no_grad()
    def calculate_log_likelihood(self, components: Sequence[GaussianComponent]) -> float:
        """sum_n log(max(sum_k pi_k N(x_n | mu_k, sigma_k), 1e-100))."""
        self._check_components(components)
        log_norm = torch.logsumexp(self._weighted_log_prob(components), dim=1)  # (N,)
        return float(log_norm.clamp_min(math.log(LOG_FLOOR)).sum().item())

    # -----------------------
    # EM steps
    # -----------------------

    @torch.no_grad()
    def _responsibilities_tensor(self, components: Sequence[GaussianComponent]) -> torch.Tensor:
        weighted_log_prob = self._weighted_log_prob(components)  # (N,K)
        log_prob_norm = torch.logsumexp(weighted_log_prob, dim=1, keepdim=True)  # (N,1)

        # rows where every component is invalid have log_prob_norm = -inf
        dead = ~torch.isfinite(log_prob_norm)
        safe_norm = torch.where(dead, torch.zeros_like(log_prob_norm), log_prob_norm)
        resp = torch.exp(weighted_log_prob - safe_norm)
        resp = torch.where(dead, torch.full_like(resp, 1.0 / self.n_components), resp)

        return resp / resp.sum(dim=1, keepdim=True)

    def calculate_responsibilities(self, components: Sequence[GaussianComponent]) -> Responsibilities:
        """Posterior p(k | x_n) for every point; each row sums to 1."""
        self._check_components(components)
        return _to_rows(self._responsibilities_tensor(components))

    def expectation_step(self, components: Sequence[GaussianComponent]) -> Responsibilities:
        return self.calculate_responsibilities(components)

    @torch.no_grad()
    def _maximization_tensor(self, resp: torch.Tensor) -> List[GaussianComponent]:
        x = self._x
        N = x.numel()
        if resp.shape != (N, self.n_components):
            raise ValueError(
                f"responsibilities must have shape {(N, self.n_components)}, got {tuple(resp.shape)}"
            )

        nk = resp.sum(dim=0) + _nk_eps()  # (K,)
        new_pi = nk / nk.sum()
        new_mu = (resp.T @ x) / nk  # (K,)

        diff = x.unsqueeze(1) - new_mu.unsqueeze(0)  # (N,K)
        new_var = (resp * diff * diff).sum(dim=0) / nk
        new_sigma = torch.sqrt(new_var.clamp_min(0.0)).clamp_min(MIN_SIGMA)

        return [
            GaussianComponent(mu=m, sigma=s, pi=p)
            for m, s, p in zip(new_mu.tolist(), new_sigma.tolist(), new_pi.tolist())
        ]

    def maximization_step(self, responsibilities: Sequence[Sequence[float]]) -> List[GaussianComponent]:
        """Re-estimate (pi, mu, sigma) from an (N, K) responsibility matrix."""
        resp = torch.as_tensor(responsibilities, dtype=DTYPE)
        return self._maximization_tensor(resp)

    def single_em_step(self, components: Sequence[GaussianComponent]) -> EMStepResult:
        """One E-step plus M-step; the log-likelihood is that of the new components.

        The reported value never drops below the input's likelihood as long as
        every input sigma is at least MIN_SIGMA. Components edited below the
        floor come back floored, which can lower the likelihood once.
        """
        self._check_components(components)
        resp = self._responsibilities_tensor(components)
        new_components = self._maximization_tensor(resp)
        return EMStepResult(
            components=tuple(new_components),
            responsibilities=_to_rows(resp),
            log_likelihood=self.calculate_log_likelihood(new_components),
        )

    # -----------------------
    # Public API
    # -----------------------

    def fit(self, initial_components: Optional[Sequence[GaussianComponent]] = None) -> GMMState:
        components = tuple(initial_components) if initial_components is not None else tuple(self.initialize_components())
        log_likelihood = self.calculate_log_likelihood(components)
        prev_log_likelihood = float("-inf")

        history = [GMMHistoryStep(components=components, iteration=0, log_likelihood=log_likelihood)]
        if self.verbose >= 1:
            print(f"Initialization: log-likelihood={log_likelihood:.6f}")

        iteration = 0
        converged = False
        while iteration < self.max_iter:
            step = self.single_em_step(components)
            components = step.components
            prev_log_likelihood = log_likelihood
            log_likelihood = step.log_likelihood
            iteration += 1

            history.append(
                GMMHistoryStep(
                    components=components,
                    iteration=iteration,
                    log_likelihood=log_likelihood,
                    responsibilities=step.responsibilities,
                )
            )
            if self.verbose >= 2:
                print(f"  Iteration {iteration}: log-likelihood={log_likelihood:.6f}, "
                      f"change={log_likelihood - prev_log_likelihood:.3e}")

            converged = has_converged_absolute(log_likelihood, prev_log_likelihood, self.tol)
            if converged:
                break

        if self.verbose >= 1:
            status = "converged" if converged else "did not converge"
            print(f"EM {status} after {iteration} iterations, log-likelihood={log_likelihood:.6f}")

        return GMMState(
            components=components,
            data=self.data,
            iteration=iteration,
            log_likelihood=log_likelihood,
            converged=converged,
            history=tuple(history),
        )

    def evaluate_mixture(self, x: float, components: Sequence[GaussianComponent]) -> MixtureEvaluation:
        """Mixture density at x, per-component weighted densities and posteriors.

        Components with non-finite values, sigma <= 0 or pi <= 0 contribute 0 but
        keep their position in the output.
        """
        probs = []
        for c in components:
            valid = (
                math.isfinite(c.mu) and math.isfinite(c.sigma) and math.isfinite(c.pi)
                and c.sigma > 0 and c.pi > 0
            )
            probs.append(c.pi * gaussian_pdf(x, c.mu, c.sigma) if valid else 0.0)

        total = sum(probs)
        if not probs:
            posteriors: List[float] = []
        elif total > 0:
            posteriors = [p / total for p in probs]
        else:
            posteriors = [1.0 / len(probs)] * len(probs)

        return MixtureEvaluation(total=total, component_probs=tuple(probs), posteriors=tuple(posteriors))

    @torch.no_grad()
    def predict(self, components: Sequence[GaussianComponent]) -> List[int]:
        """Most responsible component for each data point."""
        self._check_components(components)
        return torch.argmax(self._responsibilities_tensor(components), dim=1).tolist()
