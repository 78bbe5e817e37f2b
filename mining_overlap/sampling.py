"""
Footprint Area Sampling
=======================

Stochastic footprint sizing for mining properties. Each deposit type owns a
lognormal distribution of area multipliers (m² of disturbed land per tonne of
ore), a hard clip on the sampled multiplier and a hard clip on the resulting
footprint area.

Sampling sequence for one site:
1. Resolve the deposit type to a policy (unknown types: 50/50 between the
   fallback policies, drawn independently per call)
2. Draw multiplier ~ lognormal(log_mean, log_sd), clip to multiplier bounds
3. raw area (m²) = tonnage × multiplier
4. Clip the area to the policy's [min, max] km² bounds
5. radius = sqrt(area / π)

The two clips are independent: a multiplier inside its bounds can still give
an area outside the area bounds (small or non-positive tonnage is raised to
the minimum area).

Author: Mining Footprint Research Team
Date: 2026
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from .config import M2_PER_KM2
from .deposit_policies import (
    DEPOSIT_TYPE_POLICIES,
    FALLBACK_POLICIES,
    normalize_deposit_type,
    resolve_policy_key,
    validate_policies,
)

RandomState = Union[None, int, np.random.Generator, np.random.SeedSequence]


@dataclass(frozen=True)
class AreaSamplingPolicy:
    """Distribution parameters and bounds for one deposit type"""
    name: str
    label: str
    log_mean: float
    log_sd: float
    multiplier_min: float
    multiplier_max: float
    area_min_km2: float
    area_max_km2: float

    @classmethod
    def from_dict(cls, name: str, params: Dict) -> 'AreaSamplingPolicy':
        """Build a policy from one DEPOSIT_TYPE_POLICIES entry."""
        mult_lo, mult_hi = params['multiplier_bounds']
        area_lo, area_hi = params['area_bounds_km2']
        return cls(
            name=name,
            label=params.get('label', name),
            log_mean=float(params['log_mean']),
            log_sd=float(params['log_sd']),
            multiplier_min=float(mult_lo),
            multiplier_max=float(mult_hi),
            area_min_km2=float(area_lo),
            area_max_km2=float(area_hi),
        )

    @property
    def distribution(self):
        """Frozen scipy lognormal for the area multiplier"""
        return stats.lognorm(s=self.log_sd, scale=math.exp(self.log_mean))

    def sample_multipliers(self, n: int, rng: np.random.Generator) -> np.ndarray:
        """Draw n unclipped multipliers."""
        return np.atleast_1d(self.distribution.rvs(size=n, random_state=rng))

    def clip_multipliers(self, multipliers: np.ndarray) -> np.ndarray:
        return np.clip(multipliers, self.multiplier_min, self.multiplier_max)

    def clip_areas(self, areas_km2: np.ndarray) -> np.ndarray:
        return np.clip(areas_km2, self.area_min_km2, self.area_max_km2)

    def footprint_areas(self, tonnages, multipliers) -> Tuple[np.ndarray, np.ndarray]:
        """
        Raw and bounded footprint areas (km²) for already clipped multipliers.

        tonnage × multiplier is in m²; the area bound is applied after the
        unit conversion.
        """
        raw = np.asarray(tonnages, dtype=float) * np.asarray(multipliers, dtype=float) / M2_PER_KM2
        return raw, self.clip_areas(raw)


@dataclass(frozen=True)
class AreaSample:
    """Result of sampling one footprint"""
    deposit_type: str
    policy: str
    multiplier: float
    raw_area_km2: float
    area_km2: float
    radius_m: float
    multiplier_clipped_low: bool
    multiplier_clipped_high: bool

    @property
    def area_clipped(self) -> bool:
        return self.area_km2 != self.raw_area_km2


def radius_from_area(area_km2):
    """Radius in metres of a circle with the given area in km²."""
    return np.sqrt(np.asarray(area_km2, dtype=float) * M2_PER_KM2 / np.pi)


class SamplingPolicy:
    """
    Deposit-type keyed footprint sampler.

    Holds no random state: every call takes a seed or a
    ``numpy.random.Generator``, so results are reproducible per call and safe
    to use from parallel workers.

    Parameters
    ----------
    policies : dict, optional
        Policy table in the DEPOSIT_TYPE_POLICIES format
    fallback : tuple of str, optional
        Policy keys chosen with equal probability for unknown deposit types
    """

    def __init__(
        self,
        policies: Optional[Dict] = None,
        fallback: Sequence[str] = FALLBACK_POLICIES
    ):
        policies = DEPOSIT_TYPE_POLICIES if policies is None else policies
        validate_policies(policies, tuple(fallback), aliases={})
        self.policies = {
            key: AreaSamplingPolicy.from_dict(key, params)
            for key, params in policies.items()
        }
        self.fallback = tuple(fallback)

    def policy_key(self, deposit_type) -> Optional[str]:
        """Policy key for a deposit type (aliases or a table key), None if unknown."""
        key = resolve_policy_key(deposit_type)
        if key is None:
            key = normalize_deposit_type(deposit_type).replace(' ', '_')
        return key if key in self.policies else None

    def resolve(self, deposit_type, rng: RandomState = None) -> AreaSamplingPolicy:
        """
        Resolve a deposit type to a policy.

        Unknown or mixed types consume one uniform draw from ``rng`` to pick a
        fallback policy.
        """
        key = self.policy_key(deposit_type)
        if key is None:
            rng = np.random.default_rng(rng)
            key = self.fallback[int(rng.integers(len(self.fallback)))]
        return self.policies[key]

    def sample(self, deposit_type, tonnage: float, rng: RandomState = None) -> AreaSample:
        """
        Sample one footprint for a site.

        Parameters
        ----------
        deposit_type : str
            Deposit type as found in the site table
        tonnage : float
            Ore tonnage; values <= 0 give the policy's minimum area
        rng : int, Generator or None
            Seed or generator for this call

        Returns
        -------
        AreaSample
        """
        row = self.sample_many([deposit_type], [tonnage], rng=rng).iloc[0]
        return AreaSample(
            deposit_type=str(deposit_type),
            policy=row['policy'],
            multiplier=float(row['multiplier']),
            raw_area_km2=float(row['raw_area_km2']),
            area_km2=float(row['area_km2']),
            radius_m=float(row['radius_m']),
            multiplier_clipped_low=bool(row['multiplier_clipped_low']),
            multiplier_clipped_high=bool(row['multiplier_clipped_high']),
        )

    def sample_many(
        self,
        deposit_types: Sequence,
        tonnages: Sequence[float],
        rng: RandomState = None
    ) -> pd.DataFrame:
        """
        Vectorised sampling for many sites (one footprint each).

        Random numbers are consumed in a fixed order (fallback choices first,
        then multipliers policy by policy in table order) so a given generator
        state always yields the same result.

        Returns
        -------
        pd.DataFrame
            One row per input site, columns: policy, multiplier,
            raw_area_km2, area_km2, radius_m, multiplier_clipped_low,
            multiplier_clipped_high
        """
        rng = np.random.default_rng(rng)
        tonnages = np.asarray(tonnages, dtype=float)
        n = len(tonnages)
        if len(deposit_types) != n:
            raise ValueError(
                f"Got {len(deposit_types)} deposit types for {n} tonnages"
            )

        keys = np.array(
            [self.policy_key(d) for d in deposit_types], dtype=object
        )
        unresolved = np.array([k is None for k in keys], dtype=bool)
        if unresolved.any():
            picks = rng.integers(len(self.fallback), size=int(unresolved.sum()))
            keys[unresolved] = [self.fallback[i] for i in picks]

        multiplier = np.empty(n)
        area_km2 = np.empty(n)
        raw_area_km2 = np.empty(n)
        clipped_low = np.zeros(n, dtype=bool)
        clipped_high = np.zeros(n, dtype=bool)

        for key, policy in self.policies.items():
            idx = np.flatnonzero(keys == key)
            if len(idx) == 0:
                continue
            raw = policy.sample_multipliers(len(idx), rng)
            clipped = policy.clip_multipliers(raw)
            multiplier[idx] = clipped
            clipped_low[idx] = raw < policy.multiplier_min
            clipped_high[idx] = raw > policy.multiplier_max
            raw_area_km2[idx], area_km2[idx] = policy.footprint_areas(
                tonnages[idx], clipped
            )

        return pd.DataFrame({
            'policy': keys.astype(str),
            'multiplier': multiplier,
            'raw_area_km2': raw_area_km2,
            'area_km2': area_km2,
            'radius_m': radius_from_area(area_km2),
            'multiplier_clipped_low': clipped_low,
            'multiplier_clipped_high': clipped_high,
        })

    def area_bounds(self, policy_key: str) -> Tuple[float, float]:
        """(min, max) footprint area in km² for a policy."""
        policy = self.policies[policy_key]
        return policy.area_min_km2, policy.area_max_km2
