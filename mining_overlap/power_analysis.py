"""
Power Analysis for Ensemble Sizing
==================================

Estimates how many Monte Carlo draws are needed before running the full
overlap analysis.

Method:
1. Run a pilot ensemble with the same location jitter and footprint sampling
   as the main simulation, recording only the union area of all buffers per
   draw (plus how many sites hit the multiplier clip bounds)
2. Take the pilot mean and sample standard deviation of the union area
3. Target effect = EFFECT_FRACTION × pilot mean
4. Solve the one-sample, two-sided t-test power equation for the smallest n
   reaching the target power at the given significance level

Power of the one-sample t-test with standardized effect d and n draws:

    power(n) = P(T' > t_crit) + P(T' < -t_crit)
    T' ~ noncentral t(df = n - 1, ncp = d * sqrt(n))
    t_crit = t_{1 - alpha/2, n - 1}

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from scipy.optimize import brentq

from .buffer_simulation import BufferSimulator, generate_draw, union_area_km2
from .config import (
    BUFFER_RESOLUTION,
    EFFECT_FRACTION,
    MAX_SHIFT_M,
    PILOT_DRAWS,
    PROJECTED_CRS,
    RANDOM_SEED,
    SIG_LEVEL,
    TARGET_POWER,
)
from .sampling import SamplingPolicy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MIN_SAMPLE_SIZE = 2
MAX_SAMPLE_SIZE = 10_000_000


def one_sample_t_power(n: float, effect_size: float, sig_level: float = SIG_LEVEL) -> float:
    """
    Power of a two-sided one-sample t-test.

    Parameters
    ----------
    n : float
        Sample size (may be fractional while solving)
    effect_size : float
        Standardized effect d = delta / sd
    sig_level : float
        Significance level alpha
    """
    df = n - 1
    ncp = abs(effect_size) * math.sqrt(n)
    t_crit = stats.t.ppf(1 - sig_level / 2, df)
    return float(stats.nct.sf(t_crit, df, ncp) + stats.nct.cdf(-t_crit, df, ncp))


def required_sample_size(
    effect: float,
    sd: float,
    sig_level: float = SIG_LEVEL,
    power: float = TARGET_POWER
) -> int:
    """
    Smallest integer n with one-sample t-test power >= ``power``.

    Parameters
    ----------
    effect : float
        Effect to detect, in the units of the statistic
    sd : float
        Standard deviation of the statistic
    sig_level : float
        Significance level, in (0, 1)
    power : float
        Target power, in (0, 1)

    Returns
    -------
    int
        Required sample size (at least 2)
    """
    if not 0 < sig_level < 1:
        raise ValueError(f"sig_level must be in (0, 1), got {sig_level}")
    if not 0 < power < 1:
        raise ValueError(f"power must be in (0, 1), got {power}")
    if sd < 0:
        raise ValueError(f"sd must be >= 0, got {sd}")

    if sd == 0:
        return MIN_SAMPLE_SIZE
    if effect == 0:
        raise ValueError("effect must be non-zero to size a test")

    d = abs(effect) / sd

    def shortfall(n):
        return one_sample_t_power(n, d, sig_level) - power

    if shortfall(MIN_SAMPLE_SIZE) >= 0:
        return MIN_SAMPLE_SIZE

    upper = 16.0
    while shortfall(upper) < 0:
        upper *= 2
        if upper > MAX_SAMPLE_SIZE:
            raise ValueError(
                f"Required sample size exceeds {MAX_SAMPLE_SIZE:,} (effect size d={d:.3g})"
            )

    n = brentq(shortfall, MIN_SAMPLE_SIZE, upper, xtol=1e-6)
    n_required = math.ceil(n - 1e-9)
    # guard against the root landing a hair below the true crossing
    while shortfall(n_required) < 0:
        n_required += 1
    return int(n_required)


@dataclass
class PowerAnalysisResult:
    """Pilot ensemble and the suggested number of draws"""
    pilot_draws: pd.DataFrame
    pilot_mean: float
    pilot_sd: float
    effect_size: float
    sig_level: float
    target_power: float
    required_draws: int

    @property
    def standardized_effect(self) -> float:
        return self.effect_size / self.pilot_sd if self.pilot_sd > 0 else math.inf

    def summary(self) -> pd.DataFrame:
        rows = [
            ('pilot_draws', len(self.pilot_draws)),
            ('pilot_mean_union_area_km2', self.pilot_mean),
            ('pilot_sd_union_area_km2', self.pilot_sd),
            ('effect_size_km2', self.effect_size),
            ('standardized_effect', self.standardized_effect),
            ('sig_level', self.sig_level),
            ('target_power', self.target_power),
            ('required_draws', self.required_draws),
            ('mean_sites_clipped_low', float(self.pilot_draws['n_clipped_low'].mean())),
            ('mean_sites_clipped_high', float(self.pilot_draws['n_clipped_high'].mean())),
        ]
        return pd.DataFrame(rows, columns=['item', 'value'])


def _pilot_draw(sites, max_shift, sampling_policy, draw, seed, resolution):
    buffers = generate_draw(
        sites,
        max_shift=max_shift,
        sampling_policy=sampling_policy,
        draw=draw,
        rng=np.random.default_rng(seed),
        resolution=resolution,
    )
    return {
        'draw': draw,
        'union_area_km2': union_area_km2(buffers),
        'n_clipped_low': int(buffers['multiplier_clipped_low'].sum()),
        'n_clipped_high': int(buffers['multiplier_clipped_high'].sum()),
    }


class PowerAnalyzer:
    """
    Sizes the Monte Carlo ensemble from a pilot run of union-area draws.

    Parameters
    ----------
    sites : gpd.GeoDataFrame
        Validated sites
    sampling_policy : SamplingPolicy, optional
        Footprint sampler shared with the main simulation
    max_shift : float
        Maximum location offset per axis, metres
    crs : str or CRS
        Projected CRS for buffering
    effect_fraction : float
        Detectable effect as a fraction of the pilot mean
    random_state : int, optional
        Root seed for the pilot ensemble
    """

    def __init__(
        self,
        sites: gpd.GeoDataFrame,
        sampling_policy: Optional[SamplingPolicy] = None,
        max_shift: float = MAX_SHIFT_M,
        crs=PROJECTED_CRS,
        resolution: int = BUFFER_RESOLUTION,
        effect_fraction: float = EFFECT_FRACTION,
        random_state: Optional[int] = RANDOM_SEED
    ):
        if effect_fraction <= 0:
            raise ValueError(f"effect_fraction must be positive, got {effect_fraction}")
        self.simulator = BufferSimulator(
            sites,
            sampling_policy=sampling_policy,
            max_shift=max_shift,
            crs=crs,
            resolution=resolution,
            random_state=random_state,
        )
        self.effect_fraction = effect_fraction

    def run_pilot(self, pilot_n: int = PILOT_DRAWS, n_jobs: int = 1) -> pd.DataFrame:
        """
        Pilot table: draw, union_area_km2, n_clipped_low, n_clipped_high.
        """
        if pilot_n < 2:
            raise ValueError(f"pilot_n must be >= 2 to estimate a standard deviation, got {pilot_n}")

        sim = self.simulator
        seeds = sim.draw_seeds(pilot_n)
        logger.info(f"Running {pilot_n:,} pilot draws (workers: {n_jobs})")

        args = [
            (sim.sites, sim.max_shift, sim.sampling_policy, draw, seed, sim.resolution)
            for draw, seed in zip(range(1, pilot_n + 1), seeds)
        ]
        if n_jobs == 1:
            rows = [_pilot_draw(*a) for a in args]
        else:
            rows = Parallel(n_jobs=n_jobs, backend='loky')(
                delayed(_pilot_draw)(*a) for a in args
            )
        return pd.DataFrame(rows, columns=['draw', 'union_area_km2', 'n_clipped_low', 'n_clipped_high'])

    def estimate_required_draws(
        self,
        pilot_n: int = PILOT_DRAWS,
        target_power: float = TARGET_POWER,
        sig_level: float = SIG_LEVEL,
        n_jobs: int = 1
    ) -> PowerAnalysisResult:
        """
        Run the pilot and solve for the minimum ensemble size.

        Returns
        -------
        PowerAnalysisResult
        """
        logger.info("=" * 80)
        logger.info("POWER ANALYSIS")
        logger.info("=" * 80)

        pilot = self.run_pilot(pilot_n, n_jobs=n_jobs)
        mean = float(pilot['union_area_km2'].mean())
        sd = float(pilot['union_area_km2'].std(ddof=1))
        effect = self.effect_fraction * mean

        if mean == 0:
            raise ValueError("Pilot union area is zero; cannot size the ensemble")

        n_required = required_sample_size(effect, sd, sig_level=sig_level, power=target_power)

        logger.info(f"Pilot union area: mean={mean:,.3f} km², sd={sd:,.3f} km²")
        logger.info(f"Effect size: {effect:,.3f} km² ({100 * self.effect_fraction:.1f}% of mean)")
        logger.info(f"Sites clipped per draw: low={pilot['n_clipped_low'].mean():.1f}, "
                    f"high={pilot['n_clipped_high'].mean():.1f}")
        logger.info(f"Required draws (power={target_power}, alpha={sig_level}): {n_required:,}")

        return PowerAnalysisResult(
            pilot_draws=pilot,
            pilot_mean=mean,
            pilot_sd=sd,
            effect_size=effect,
            sig_level=sig_level,
            target_power=target_power,
            required_draws=n_required,
        )


def estimate_required_draws(
    sites: gpd.GeoDataFrame,
    pilot_n: int = PILOT_DRAWS,
    target_power: float = TARGET_POWER,
    sig_level: float = SIG_LEVEL,
    **kwargs
) -> int:
    """Minimum ensemble size for ``sites`` (see PowerAnalyzer for kwargs)."""
    analyzer = PowerAnalyzer(sites, **kwargs)
    return analyzer.estimate_required_draws(pilot_n, target_power, sig_level).required_draws
