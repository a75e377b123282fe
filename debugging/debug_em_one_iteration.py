import os
import sys

import numpy as np
import torch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from em_playground._gmm_em import GaussianComponent, GaussianMixture1D
from em_playground._numerics import DTYPE, log_gaussian_pdf_tensor


def pretty(name, arr):
    arr = np.asarray(arr)
    print(f"\n{name}:")
    print(arr)
    print(f"shape={arr.shape}, dtype={arr.dtype}")


def main():
    np.set_printoptions(precision=6, suppress=True)

    # -----------------------------
    # 1) Hard-coded tiny dataset (1D)
    # -----------------------------
    data = [-2.0, -1.5, -1.0, 1.0, 1.5, 2.0]
    X = torch.tensor(data, dtype=DTYPE)

    # -----------------------------
    # 2) Hard-coded starting params
    # -----------------------------
    components = [
        GaussianComponent(mu=-1.0, sigma=0.7, pi=0.5),
        GaussianComponent(mu=1.0, sigma=0.7, pi=0.5),
    ]
    mu = torch.tensor([c.mu for c in components], dtype=DTYPE)
    sigma = torch.tensor([c.sigma for c in components], dtype=DTYPE)
    pi = torch.tensor([c.pi for c in components], dtype=DTYPE)

    pretty("X", X)
    pretty("weights (pi)", pi)
    pretty("means (mu)", mu)
    pretty("std devs (sigma)", sigma)

    # -----------------------------
    # 3) E-step pieces
    #    log p(x|k) and responsibilities
    # -----------------------------
    log_prob = log_gaussian_pdf_tensor(X, mu, sigma)
    pretty("log_prob = log N(x|mu_k,sigma_k)", log_prob)

    log_resp_unnorm = log_prob + torch.log(pi)
    pretty("log_resp_unnorm = log pi_k + log_prob", log_resp_unnorm)

    log_norm = torch.logsumexp(log_resp_unnorm, dim=1, keepdim=True)
    resp = torch.exp(log_resp_unnorm - log_norm)
    pretty("log_norm = log sum_k exp(log_resp_unnorm)", log_norm.squeeze())
    pretty("resp = responsibilities", resp)

    gmm = GaussianMixture1D(data, n_components=2)
    engine_resp = np.asarray(gmm.expectation_step(components))
    print("\nSanity check: each row of resp should sum to 1:")
    print(resp.sum(dim=1))
    print(f"max |resp - engine resp| = {np.abs(resp.numpy() - engine_resp).max():.3e}")

    # -----------------------------
    # 4) M-step (from responsibilities)
    # -----------------------------
    new_components = gmm.maximization_step(engine_resp)
    nk = resp.sum(dim=0)
    pretty("nk = sum_n r_nk", nk)
    pretty("new_weights", [c.pi for c in new_components])
    pretty("new_means", [c.mu for c in new_components])
    pretty("new_sigmas", [c.sigma for c in new_components])

    before = gmm.calculate_log_likelihood(components)
    after = gmm.calculate_log_likelihood(new_components)
    print(f"\nlog-likelihood: {before:.6f} -> {after:.6f} (delta = {after - before:+.6e})")


if __name__ == "__main__":
    main()
