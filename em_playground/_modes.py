# em_playground/_modes.py
"""Algorithm modes and a tagged result type per mode.

Each engine keeps its own state types; the variant below only tags which one
a caller is holding so that it can dispatch without nullable shared fields.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Tuple, Union

from em_playground._gaussian_2d import DEFAULT_LEARNING_RATE, Gaussian2DEstimator, Gaussian2DState
from em_playground._gmm_em import GaussianMixture1D, GMMState
from em_playground._kmeans import KMeans1D, KMeansResult


class AlgorithmMode(Enum):
    GMM = "gmm"
    KMEANS = "kmeans"
    GAUSSIAN_2D = "gaussian2d"


ALGORITHM_LABELS = {
    AlgorithmMode.GMM: "Gaussian Mixture Model",
    AlgorithmMode.KMEANS: "K-Means Clustering",
    AlgorithmMode.GAUSSIAN_2D: "2D Gaussian Fitting",
}

ALGORITHM_DESCRIPTIONS = {
    AlgorithmMode.GMM: "Probabilistic model using Expectation-Maximization algorithm",
    AlgorithmMode.KMEANS: "Centroid-based clustering using iterative assignment and update",
    AlgorithmMode.GAUSSIAN_2D: "Bivariate normal fitted by maximum likelihood or gradient descent",
}


@dataclass(frozen=True)
class AlgorithmConfig:
    mode: AlgorithmMode
    component_count: int = 2
    max_iterations: int = 100
    learning_rate: float = DEFAULT_LEARNING_RATE


@dataclass(frozen=True)
class GMMRun:
    mode: ClassVar[AlgorithmMode] = AlgorithmMode.GMM
    state: GMMState

    @property
    def steps(self) -> int:
        return len(self.state.history)


@dataclass(frozen=True)
class KMeansRun:
    mode: ClassVar[AlgorithmMode] = AlgorithmMode.KMEANS
    history: Tuple[KMeansResult, ...]

    @property
    def steps(self) -> int:
        return len(self.history)


@dataclass(frozen=True)
class Gaussian2DRun:
    mode: ClassVar[AlgorithmMode] = AlgorithmMode.GAUSSIAN_2D
    state: Gaussian2DState

    @property
    def steps(self) -> int:
        return len(self.state.history)


AlgorithmRun = Union[GMMRun, KMeansRun, Gaussian2DRun]


def run_algorithm(config: AlgorithmConfig, data) -> AlgorithmRun:
    """Run the engine selected by ``config.mode`` to convergence."""
    if config.mode is AlgorithmMode.GMM:
        gmm = GaussianMixture1D(data, n_components=config.component_count, max_iter=config.max_iterations)
        return GMMRun(state=gmm.fit())

    if config.mode is AlgorithmMode.KMEANS:
        kmeans = KMeans1D(data, n_clusters=config.component_count)
        return KMeansRun(history=tuple(kmeans.run(max_iterations=config.max_iterations)))

    if config.mode is AlgorithmMode.GAUSSIAN_2D:
        estimator = Gaussian2DEstimator(data, max_iter=config.max_iterations)
        return Gaussian2DRun(state=estimator.fit_with_gradient_descent(learning_rate=config.learning_rate))

    raise ValueError(f"Unknown algorithm mode={config.mode!r}")
