"""
Example: stepping the engines from caller-held state

The engines keep no memory between calls. The caller holds the list of
immutable snapshots, can step back to any of them, edit parameters and
continue from there.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dataclasses import replace

import torch

from em_playground._gaussian_2d import Gaussian2DEstimator
from em_playground._gmm_em import GaussianMixture1D, GMMHistoryStep
from em_playground._kmeans import KMeans1D
from em_playground._modes import ALGORITHM_LABELS, AlgorithmConfig, AlgorithmMode, run_algorithm
from em_playground._sample_data import SampleData2DConfig, SampleDataConfig, generate_sample_data, generate_sample_data_2d

torch.manual_seed(123)
data = generate_sample_data(SampleDataConfig(total_points=150, preset="trimodal"))
points = generate_sample_data_2d(SampleData2DConfig(total_points=150, preset="anticorrelated"))

print("="*80)
print("Stepwise session - caller-held history")
print("="*80)
print()

# Example 1: step GMM by hand, keeping every snapshot
print("Example 1: five EM steps, then go back two and edit a component")
print("-" * 80)
gmm = GaussianMixture1D(data, n_components=3)
components = gmm.initialize_components()
history = [GMMHistoryStep(components=tuple(components), iteration=0,
                          log_likelihood=gmm.calculate_log_likelihood(components))]

for i in range(1, 6):
    step = gmm.single_em_step(history[-1].components)
    history.append(GMMHistoryStep(components=tuple(step.components), iteration=i,
                                  log_likelihood=step.log_likelihood, responsibilities=step.responsibilities))
    print(f"Step {i}: log-likelihood={step.log_likelihood:.4f}  mu={[round(c.mu, 3) for c in step.components]}")

# Snapshots are frozen so going back is just indexing
back = history[3]
print(f"\nBack at step {back.iteration}: log-likelihood={back.log_likelihood:.4f}")

# Caller-side edit: move the first mean and renormalise the weights
edited = [replace(back.components[0], mu=back.components[0].mu + 1.0, pi=0.5)] + list(back.components[1:])
total = sum(c.pi for c in edited)
edited = [replace(c, pi=c.pi / total) for c in edited]
print(f"Edited weights sum to {sum(c.pi for c in edited):.6f}")

history = history[:4]
state = gmm.fit(edited)
print(f"Refit from the edit: converged={state.converged} after {state.iteration} iterations, "
      f"log-likelihood={state.log_likelihood:.4f}")
print(f"Original snapshot untouched: mu={[round(c.mu, 3) for c in history[3].components]}")
print()

# Example 2: K-means one Lloyd iteration at a time
print("Example 2: K-means stepped until convergence")
print("-" * 80)
kmeans = KMeans1D(data, n_clusters=3)
centroids = kmeans.initialize_centroids()
for i in range(1, 101):
    result = kmeans.single_iteration(centroids)
    print(f"Iteration {i}: inertia={result.inertia:.4f}  sizes={[c.size for c in result.clusters]}")
    centroids = list(result.centroids)
    if result.converged:
        break
print()

# Example 3: 2D gradient descent against the closed form
print("Example 3: 2D gradient descent vs closed-form MLE")
print("-" * 80)
estimator = Gaussian2DEstimator(points)
g = estimator.initialize_gaussian()
for i in range(1, 6):
    g = estimator.single_gradient_descent_step(g, learning_rate=0.001).gaussian
    print(f"Step {i}: log-likelihood={g.log_likelihood:.4f}  corr={estimator.correlation(g):+.3f}")
mle = estimator.fit_gaussian()
print(f"Closed form: log-likelihood={mle.log_likelihood:.4f}  corr={estimator.correlation(mle):+.3f}")
print()

# Example 4: one call per mode through the tagged dispatcher
print("Example 4: run every mode")
print("-" * 80)
for mode, inputs in [(AlgorithmMode.GMM, data), (AlgorithmMode.KMEANS, data), (AlgorithmMode.GAUSSIAN_2D, points)]:
    run = run_algorithm(AlgorithmConfig(mode=mode, component_count=3, learning_rate=0.001), inputs)
    print(f"{ALGORITHM_LABELS[run.mode]:<25s} steps={run.steps}")
print("="*80)
