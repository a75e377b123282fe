"""Observe parameter updates iteration-by-iteration for every algorithm mode."""

import os
import sys

import pandas as pd
import torch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from em_playground._gaussian_2d import Gaussian2DEstimator
from em_playground._gmm_em import GaussianMixture1D
from em_playground._kmeans import KMeans1D
from em_playground._sample_data import (
    SampleData2DConfig,
    SampleDataConfig,
    generate_sample_data,
    generate_sample_data_2d,
)


def gmm_history_frame(state) -> pd.DataFrame:
    rows = []
    for step in state.history:
        row = {"iteration": step.iteration, "log_likelihood": step.log_likelihood}
        for k, c in enumerate(step.components):
            row[f"mu_{k}"] = c.mu
            row[f"sigma_{k}"] = c.sigma
            row[f"pi_{k}"] = c.pi
        rows.append(row)
    df = pd.DataFrame(rows).set_index("iteration")
    df["delta"] = df["log_likelihood"].diff()
    return df


def kmeans_history_frame(history) -> pd.DataFrame:
    rows = []
    for result in history:
        row = {"iteration": result.iteration, "inertia": result.inertia, "converged": result.converged}
        for k, (centroid, cluster) in enumerate(zip(result.centroids, result.clusters)):
            row[f"c_{k}"] = centroid
            row[f"n_{k}"] = cluster.size
        rows.append(row)
    return pd.DataFrame(rows).set_index("iteration")


def gaussian_2d_history_frame(state) -> pd.DataFrame:
    rows = [
        {
            "iteration": step.iteration,
            "log_likelihood": step.log_likelihood,
            "mu_x": step.gaussian.mu.x,
            "mu_y": step.gaussian.mu.y,
            "s_xx": step.gaussian.sigma.xx,
            "s_xy": step.gaussian.sigma.xy,
            "s_yy": step.gaussian.sigma.yy,
        }
        for step in state.history
    ]
    df = pd.DataFrame(rows).set_index("iteration")
    df["delta"] = df["log_likelihood"].diff()
    return df


def observe_gmm(data):
    print("="*70)
    print("GMM (EM) - Observing Iterations")
    print("="*70)

    gmm = GaussianMixture1D(data, n_components=2, max_iter=50, verbose=1)
    state = gmm.fit()
    print()
    print(gmm_history_frame(state).to_string(float_format=lambda v: f"{v:.6f}"))
    print(f"\n  Converged: {state.converged}  Iterations: {state.iteration}")
    print("="*70 + "\n")


def observe_kmeans(data):
    print("="*70)
    print("K-MEANS - Observing Iterations")
    print("="*70)

    history = KMeans1D(data, n_clusters=2).run()
    print(kmeans_history_frame(history).to_string(float_format=lambda v: f"{v:.6f}"))

    print("\n  Elbow curve:")
    elbow = pd.DataFrame([{"k": p.k, "inertia": p.inertia} for p in KMeans1D(data).find_optimal_k(6)])
    print(elbow.set_index("k").to_string(float_format=lambda v: f"{v:.4f}"))
    print("="*70 + "\n")


def observe_gaussian_2d(points):
    print("="*70)
    print("2D GAUSSIAN (gradient descent) - Observing Iterations")
    print("="*70)

    estimator = Gaussian2DEstimator(points, max_iter=40)
    state = estimator.fit_with_gradient_descent(learning_rate=0.001)
    df = gaussian_2d_history_frame(state)
    print(pd.concat([df.head(5), df.tail(5)]).to_string(float_format=lambda v: f"{v:.6f}"))

    mle = estimator.fit_gaussian()
    print(f"\n  Closed-form MLE log-likelihood: {mle.log_likelihood:.6f}")
    print(f"  Gradient descent log-likelihood: {state.log_likelihood:.6f}")
    print("="*70 + "\n")


if __name__ == "__main__":
    torch.manual_seed(42)
    data = generate_sample_data(SampleDataConfig(total_points=200, preset="bimodal"))
    points = generate_sample_data_2d(SampleData2DConfig(total_points=200, preset="correlated"))

    observe_gmm(data)
    observe_kmeans(data)
    observe_gaussian_2d(points)
