#!/usr/bin/env python3
"""Compare the playground engines against scikit-learn reference fits.

GMM means/std devs/weights are compared with sklearn.mixture.GaussianMixture and
K-means inertia with sklearn.cluster.KMeans, across the 1D sample presets.
"""

import sys
import os
import time
from typing import Callable, Tuple

import numpy as np
import pandas as pd
import torch
from sklearn.cluster import KMeans
from sklearn.mixture import GaussianMixture

# Add parent directory to path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

from em_playground._gmm_em import GaussianMixture1D
from em_playground._kmeans import KMeans1D
from em_playground._sample_data import PRESETS_1D, SampleDataConfig, generate_sample_data


def timer(func: Callable, *args, n_runs: int = 3, **kwargs) -> Tuple[float, object]:
    """Mean wall time in milliseconds plus the last result."""
    times = []
    result = None
    for _ in range(n_runs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        times.append((time.perf_counter() - start) * 1000)
    return float(np.mean(times)), result


def compare_gmm(preset: str, n_points: int = 300) -> dict:
    torch.manual_seed(0)
    data = np.asarray(generate_sample_data(SampleDataConfig(total_points=n_points, preset=preset)))
    K = len(PRESETS_1D[preset])

    ours_ms, state = timer(lambda: GaussianMixture1D(data, n_components=K, max_iter=200).fit())
    sk_ms, sk = timer(
        lambda: GaussianMixture(n_components=K, tol=1e-8, max_iter=500, random_state=0).fit(data.reshape(-1, 1))
    )

    ours = sorted(state.components, key=lambda c: c.mu)
    order = np.argsort(sk.means_.ravel())
    sk_mu = sk.means_.ravel()[order]
    sk_sigma = np.sqrt(sk.covariances_.ravel()[order])
    sk_pi = sk.weights_[order]

    return {
        "preset": preset,
        "K": K,
        "iterations": state.iteration,
        "max|d mu|": max(abs(c.mu - m) for c, m in zip(ours, sk_mu)),
        "max|d sigma|": max(abs(c.sigma - s) for c, s in zip(ours, sk_sigma)),
        "max|d pi|": max(abs(c.pi - p) for c, p in zip(ours, sk_pi)),
        "ours_ms": ours_ms,
        "sklearn_ms": sk_ms,
    }


def compare_kmeans(preset: str, n_points: int = 300) -> dict:
    torch.manual_seed(0)
    data = np.asarray(generate_sample_data(SampleDataConfig(total_points=n_points, preset=preset)))
    K = len(PRESETS_1D[preset])

    ours_ms, history = timer(lambda: KMeans1D(data, n_clusters=K).run())
    sk_ms, sk = timer(lambda: KMeans(n_clusters=K, n_init=10, random_state=0).fit(data.reshape(-1, 1)))

    return {
        "preset": preset,
        "K": K,
        "iterations": history[-1].iteration,
        "inertia": history[-1].inertia,
        "sklearn_inertia": sk.inertia_,
        "rel_diff": abs(history[-1].inertia - sk.inertia_) / max(sk.inertia_, 1e-12),
        "ours_ms": ours_ms,
        "sklearn_ms": sk_ms,
    }


def main():
    pd.set_option("display.width", 140)

    print("="*70)
    print("GMM vs sklearn.mixture.GaussianMixture")
    print("="*70)
    gmm_df = pd.DataFrame([compare_gmm(p) for p in PRESETS_1D]).set_index("preset")
    print(gmm_df.to_string(float_format=lambda v: f"{v:.4f}"))

    print("\n" + "="*70)
    print("K-means vs sklearn.cluster.KMeans")
    print("="*70)
    km_df = pd.DataFrame([compare_kmeans(p) for p in PRESETS_1D]).set_index("preset")
    print(km_df.to_string(float_format=lambda v: f"{v:.4f}"))
    print("="*70)


if __name__ == "__main__":
    main()
