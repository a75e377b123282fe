# em_playground/_kmeans.py
"""One-dimensional K-means (Lloyd's algorithm) with k-means++ seeding.

Centroids are plain floats; a run is a list of KMeansResult snapshots, the
first one being the seeded centroids with their initial assignment.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import torch

from em_playground._numerics import (
    DTYPE,
    as_tensor_1d,
    has_converged_array,
    kmeans_plus_plus_1d,
    uniform_initialization_1d,
)


@dataclass(frozen=True)
class KMeansCluster:
    centroid: float
    points: Tuple[float, ...]
    size: int


@dataclass(frozen=True)
class KMeansResult:
    centroids: Tuple[float, ...]
    assignments: Tuple[int, ...]
    clusters: Tuple[KMeansCluster, ...]
    iteration: int
    inertia: float
    converged: bool


@dataclass(frozen=True)
class ElbowPoint:
    k: int
    inertia: float


class KMeans1D:
    """Lloyd iterations over a fixed 1D dataset.

    ``n_clusters`` larger than the number of points is clamped to it.
    """

    def __init__(self, data: Sequence[float], n_clusters: int = 2, tol: float = 1e-6, verbose: int = 0) -> None:
        if n_clusters <= 0:
            raise ValueError("n_clusters must be positive")
        if tol < 0:
            raise ValueError("tol must be non-negative")

        self._x = as_tensor_1d(data)
        N = self._x.numel()
        if N == 0:
            raise ValueError("data must contain at least one value")

        if n_clusters > N:
            warnings.warn(
                f"n_clusters={n_clusters} exceeds the number of points ({N}); using {N}",
                UserWarning,
                stacklevel=2,
            )
            n_clusters = N

        self.n_clusters = n_clusters
        self.tol = tol
        self.verbose = verbose

    @property
    def data(self) -> Tuple[float, ...]:
        return tuple(self._x.tolist())

    def _as_centroids(self, centroids: Sequence[float]) -> torch.Tensor:
        c = torch.as_tensor(list(centroids), dtype=DTYPE)
        if c.shape != (self.n_clusters,):
            raise ValueError(f"expected {self.n_clusters} centroids, got shape {tuple(c.shape)}")
        return c

    # -----------------------
    # Initialization
    # -----------------------

    def initialize_centroids_simple(self) -> List[float]:
        """Centroids evenly spaced inside the data range."""
        return uniform_initialization_1d(self._x, self.n_clusters)

    def initialize_centroids(self) -> List[float]:
        """k-means++ seeding, sorted ascending."""
        return kmeans_plus_plus_1d(self._x, self.n_clusters)

    # -----------------------
    # Lloyd pieces
    # -----------------------

    @torch.no_grad()
    def _assign(self, c: torch.Tensor) -> torch.Tensor:
        d = torch.abs(self._x.unsqueeze(1) - c.unsqueeze(0))  # (N,K)
        return torch.argmin(d, dim=1)  # first minimum wins ties

    @torch.no_grad()
    def _update(self, c: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        x, K = self._x, self.n_clusters
        counts = torch.zeros((K,), dtype=DTYPE)
        sums = torch.zeros((K,), dtype=DTYPE)
        counts.scatter_add_(0, labels, torch.ones_like(x))
        sums.scatter_add_(0, labels, x)

        new_c = c.clone()
        filled = counts > 0
        new_c[filled] = sums[filled] / counts[filled]

        # Handle empty clusters
        empty_mask = ~filled
        if empty_mask.any():
            random_idx = torch.randint(0, x.numel(), (int(empty_mask.sum().item()),))
            new_c[empty_mask] = x[random_idx]
        return new_c

    @torch.no_grad()
    def _inertia(self, c: torch.Tensor, labels: torch.Tensor) -> float:
        return float(((self._x - c[labels]) ** 2).sum().item())

    def _clusters(self, c: torch.Tensor, labels: torch.Tensor) -> Tuple[KMeansCluster, ...]:
        clusters = []
        for k in range(self.n_clusters):
            points = tuple(self._x[labels == k].tolist())
            clusters.append(KMeansCluster(centroid=float(c[k].item()), points=points, size=len(points)))
        return tuple(clusters)

    def _snapshot(self, c: torch.Tensor, labels: torch.Tensor, iteration: int, converged: bool) -> KMeansResult:
        return KMeansResult(
            centroids=tuple(c.tolist()),
            assignments=tuple(labels.tolist()),
            clusters=self._clusters(c, labels),
            iteration=iteration,
            inertia=self._inertia(c, labels),
            converged=converged,
        )

    def assign_points(self, centroids: Sequence[float]) -> List[int]:
        """Index of the nearest centroid for every point, in input order."""
        return self._assign(self._as_centroids(centroids)).tolist()

    def calculate_inertia(self, centroids: Sequence[float], assignments: Sequence[int]) -> float:
        labels = torch.as_tensor(list(assignments), dtype=torch.long)
        if labels.shape != self._x.shape:
            raise ValueError(f"expected {self._x.numel()} assignments, got {labels.numel()}")
        return self._inertia(self._as_centroids(centroids), labels)

    def single_iteration(self, centroids: Sequence[float]) -> KMeansResult:
        """Assignment step then update step.

        Inertia is measured for the new centroids against the assignments made in
        this step. The returned iteration is 0; ``run`` renumbers.
        """
        c = self._as_centroids(centroids)
        labels = self._assign(c)
        new_c = self._update(c, labels)
        converged = has_converged_array(new_c.tolist(), c.tolist(), self.tol)
        return self._snapshot(new_c, labels, iteration=0, converged=converged)

    # -----------------------
    # Public API
    # -----------------------

    def run(self, max_iterations: int = 100, initial_centroids: Optional[Sequence[float]] = None) -> List[KMeansResult]:
        if max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")

        centroids = list(initial_centroids) if initial_centroids is not None else self.initialize_centroids()
        c = self._as_centroids(centroids)
        history = [self._snapshot(c, self._assign(c), iteration=0, converged=False)]
        if self.verbose >= 1:
            print(f"Initialization: centroids={[round(v, 4) for v in c.tolist()]}, inertia={history[0].inertia:.6f}")

        for iteration in range(1, max_iterations + 1):
            result = replace(self.single_iteration(centroids), iteration=iteration)
            history.append(result)
            if self.verbose >= 2:
                print(f"  Iteration {iteration}: inertia={result.inertia:.6f}")
            if result.converged:
                break
            centroids = list(result.centroids)

        if self.verbose >= 1:
            status = "converged" if history[-1].converged else "did not converge"
            print(f"K-means {status} after {history[-1].iteration} iterations, inertia={history[-1].inertia:.6f}")

        return history

    def find_optimal_k(self, max_k: Optional[int] = None) -> List[ElbowPoint]:
        """Final inertia of an independent run for each k in 1..max_k (elbow curve)."""
        N = self._x.numel()
        if max_k is None:
            max_k = max(1, min(10, N // 2))
        max_k = min(max_k, N)

        data = self._x.tolist()
        results = []
        for k in range(1, max_k + 1):
            history = KMeans1D(data, n_clusters=k, tol=self.tol).run()
            results.append(ElbowPoint(k=k, inertia=history[-1].inertia))
        return results

    def distances_to_centroids(self, x: float, centroids: Sequence[float]) -> List[float]:
        return [abs(x - c) for c in centroids]

    def nearest_centroid(self, x: float, centroids: Sequence[float]) -> int:
        """Index of the closest centroid to x (lowest index on ties), -1 if none."""
        distances = self.distances_to_centroids(x, centroids)
        if not distances:
            return -1
        return distances.index(min(distances))
