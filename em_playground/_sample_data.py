# em_playground/_sample_data.py
"""Synthetic datasets for the explorer.

1D data is drawn from a Gaussian mixture and returned sorted; 2D data is drawn
from one or more bivariate Gaussians. Point counts are allocated as
floor(total * weight) per component and the remainder is drawn from components
picked at random by weight, so the output size always equals total_points.

Presets:
- 1D: bimodal, trimodal, overlapping, separated, uniform
- 2D: circular, elliptical, correlated, anticorrelated, stretched
Passing ``components`` explicitly overrides the preset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import torch

from em_playground._numerics import DTYPE, Matrix2x2, Point2D, regularize_covariance_2x2


@dataclass(frozen=True)
class MixtureComponentSpec:
    mean: float
    std_dev: float
    weight: float = 1.0


@dataclass(frozen=True)
class Gaussian2DComponentSpec:
    mean: Point2D
    covariance: Matrix2x2
    weight: float = 1.0


@dataclass(frozen=True)
class SampleDataConfig:
    total_points: int = 100
    preset: str = "bimodal"
    components: Optional[Tuple[MixtureComponentSpec, ...]] = None


@dataclass(frozen=True)
class SampleData2DConfig:
    total_points: int = 100
    preset: str = "correlated"
    components: Optional[Tuple[Gaussian2DComponentSpec, ...]] = None


@dataclass(frozen=True)
class GeneratedDataInfo:
    data: Tuple[float, ...]
    components: Tuple[MixtureComponentSpec, ...]
    counts: Tuple[int, ...]


PRESETS_1D: Dict[str, Tuple[MixtureComponentSpec, ...]] = {
    "bimodal": (
        MixtureComponentSpec(mean=3.0, std_dev=1.0, weight=0.6),
        MixtureComponentSpec(mean=8.0, std_dev=1.2, weight=0.4),
    ),
    "trimodal": (
        MixtureComponentSpec(mean=2.0, std_dev=0.8, weight=0.3),
        MixtureComponentSpec(mean=6.0, std_dev=1.0, weight=0.4),
        MixtureComponentSpec(mean=10.0, std_dev=0.8, weight=0.3),
    ),
    "overlapping": (
        MixtureComponentSpec(mean=4.0, std_dev=1.5, weight=0.5),
        MixtureComponentSpec(mean=6.0, std_dev=1.5, weight=0.5),
    ),
    "separated": (
        MixtureComponentSpec(mean=2.0, std_dev=0.5, weight=0.5),
        MixtureComponentSpec(mean=12.0, std_dev=0.5, weight=0.5),
    ),
    "uniform": (
        MixtureComponentSpec(mean=5.0, std_dev=3.0, weight=1.0),
    ),
}

PRESETS_2D: Dict[str, Tuple[Gaussian2DComponentSpec, ...]] = {
    "circular": (
        Gaussian2DComponentSpec(mean=Point2D(x=0.0, y=0.0), covariance=Matrix2x2(xx=1.0, xy=0.0, yy=1.0)),
    ),
    "elliptical": (
        Gaussian2DComponentSpec(mean=Point2D(x=0.0, y=0.0), covariance=Matrix2x2(xx=4.0, xy=0.0, yy=1.0)),
    ),
    "correlated": (
        Gaussian2DComponentSpec(mean=Point2D(x=0.0, y=0.0), covariance=Matrix2x2(xx=2.0, xy=1.2, yy=2.0)),
    ),
    "anticorrelated": (
        Gaussian2DComponentSpec(mean=Point2D(x=0.0, y=0.0), covariance=Matrix2x2(xx=2.0, xy=-1.2, yy=2.0)),
    ),
    "stretched": (
        Gaussian2DComponentSpec(mean=Point2D(x=0.0, y=0.0), covariance=Matrix2x2(xx=9.0, xy=0.0, yy=0.25)),
    ),
}


# ---------------------------
# Utilities
# ---------------------------

def _check_total(total_points: int) -> None:
    if total_points < 0:
        raise ValueError("total_points must be non-negative")


def _resolve(preset: str, components, presets: Dict[str, tuple]) -> tuple:
    if components is not None:
        if len(components) == 0:
            raise ValueError("components must not be empty")
        return tuple(components)
    if preset not in presets:
        raise ValueError(f"Unknown preset={preset!r}; expected one of {tuple(presets)}")
    return presets[preset]


def _normalized_weights(weights: Sequence[float]) -> torch.Tensor:
    w = torch.tensor(list(weights), dtype=DTYPE)
    if (w < 0).any():
        raise ValueError("component weights must be non-negative")
    total = w.sum()
    if total.item() <= 0:
        raise ValueError("component weights must sum to a positive value")
    return w / total


@torch.no_grad()
def _allocate_counts(total_points: int, weights: torch.Tensor) -> List[int]:
    """floor(total * w_k) per component, remainder assigned by weighted draws."""
    counts = torch.floor(total_points * weights).to(torch.long)
    remainder = total_points - int(counts.sum().item())
    if remainder > 0:
        extra = torch.multinomial(weights, remainder, replacement=True)
        counts += torch.bincount(extra, minlength=weights.numel())
    return counts.tolist()


# ---------------------------
# Public API
# ---------------------------

@torch.no_grad()
def generate_sample_data_with_info(config: Optional[SampleDataConfig] = None) -> GeneratedDataInfo:
    config = config if config is not None else SampleDataConfig()
    _check_total(config.total_points)
    components = _resolve(config.preset, config.components, PRESETS_1D)
    for c in components:
        if c.std_dev < 0:
            raise ValueError("std_dev must be non-negative")

    weights = _normalized_weights([c.weight for c in components])
    counts = _allocate_counts(config.total_points, weights)

    draws = [
        c.mean + c.std_dev * torch.randn(n, dtype=DTYPE)
        for c, n in zip(components, counts)
    ]
    data = torch.sort(torch.cat(draws)).values if draws else torch.zeros(0, dtype=DTYPE)

    return GeneratedDataInfo(data=tuple(data.tolist()), components=components, counts=tuple(counts))


def generate_sample_data(config: Optional[SampleDataConfig] = None) -> List[float]:
    """total_points values from a 1D Gaussian mixture, sorted ascending."""
    return list(generate_sample_data_with_info(config).data)


@torch.no_grad()
def generate_sample_data_2d(config: Optional[SampleData2DConfig] = None) -> List[Point2D]:
    config = config if config is not None else SampleData2DConfig()
    _check_total(config.total_points)
    components = _resolve(config.preset, config.components, PRESETS_2D)

    weights = _normalized_weights([c.weight for c in components])
    counts = _allocate_counts(config.total_points, weights)

    points: List[Point2D] = []
    for c, n in zip(components, counts):
        if n == 0:
            continue
        cov = regularize_covariance_2x2(c.covariance)
        mvn = torch.distributions.MultivariateNormal(
            loc=torch.tensor([c.mean.x, c.mean.y], dtype=DTYPE),
            covariance_matrix=torch.tensor([[cov.xx, cov.xy], [cov.xy, cov.yy]], dtype=DTYPE),
        )
        points.extend(Point2D(x=x, y=y) for x, y in mvn.sample((n,)).tolist())
    return points
