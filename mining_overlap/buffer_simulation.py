"""
Monte Carlo Buffer Simulation for Mining Footprints
===================================================

This module generates stochastic footprints (circular buffers) for mining
properties. Each draw of the ensemble perturbs every site's location and
samples its footprint area from the deposit-type policy.

Model Structure:
- Location: site point + (dx, dy), each ~ U[-max_shift, max_shift] metres
- Area: SamplingPolicy (lognormal multiplier × tonnage, two clips)
- Footprint: polygon around the shifted point with the same area as the
  disc of radius sqrt(area / π)

Randomness:
Every draw gets its own generator spawned from one SeedSequence, so an
ensemble is reproducible from a single seed no matter how many workers
generate it or in which order draws finish.

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from joblib import Parallel, delayed
from shapely.ops import unary_union

from .config import (
    BUFFER_RESOLUTION,
    M2_PER_KM2,
    MAX_SHIFT_M,
    PROJECTED_CRS,
    RANDOM_SEED,
)
from .data_ingestion import save_draw
from .sampling import RandomState, SamplingPolicy

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

BUFFER_COLUMNS = [
    'draw', 'site_id', 'deposit_type', 'tonnage', 'policy', 'multiplier',
    'multiplier_clipped_low', 'multiplier_clipped_high', 'area_km2',
    'radius_m', 'shift_x', 'shift_y', 'geometry',
]


def project_sites(sites: gpd.GeoDataFrame, crs=PROJECTED_CRS) -> gpd.GeoDataFrame:
    """Reproject sites to the metric CRS used for buffering."""
    if sites.crs is None:
        raise ValueError("Sites have no CRS; cannot project to a metric CRS")
    if sites.crs == crs:
        return sites
    return sites.to_crs(crs)


def sample_shifts(n: int, max_shift: float, rng: np.random.Generator):
    """(dx, dy) offsets, each axis uniform on [-max_shift, max_shift]."""
    if max_shift < 0:
        raise ValueError(f"max_shift must be >= 0, got {max_shift}")
    dx = rng.uniform(-max_shift, max_shift, size=n)
    dy = rng.uniform(-max_shift, max_shift, size=n)
    return dx, dy


def polygon_radius(radius, resolution: int = BUFFER_RESOLUTION):
    """
    Vertex radius of the buffer polygon whose area equals the disc of ``radius``.

    A point buffer is a regular polygon with 4 * resolution vertices on the
    circle, so it holds less area than the disc. Scaling the radius by
    sqrt(2π / (n sin(2π / n))) makes the polygon area equal πr².
    """
    n = 4 * resolution
    return np.asarray(radius) * np.sqrt(2 * np.pi / (n * np.sin(2 * np.pi / n)))


def generate_draw(
    sites: gpd.GeoDataFrame,
    max_shift: float = MAX_SHIFT_M,
    sampling_policy: Optional[SamplingPolicy] = None,
    draw: int = 0,
    rng: RandomState = None,
    resolution: int = BUFFER_RESOLUTION
) -> gpd.GeoDataFrame:
    """
    Generate one stochastic buffer per site.

    Parameters
    ----------
    sites : gpd.GeoDataFrame
        Point sites with site_id, deposit_type and tonnage, in a metric CRS
    max_shift : float
        Maximum offset per axis, in CRS units (metres)
    sampling_policy : SamplingPolicy, optional
        Footprint sampler (default policy table when omitted)
    draw : int
        Draw index written to every row
    rng : int, Generator or None
        Seed or generator for this draw
    resolution : int
        Segments per quarter circle

    Returns
    -------
    gpd.GeoDataFrame
        One polygon per site with the sampled diagnostics (BUFFER_COLUMNS)
    """
    if sites.crs is not None and sites.crs.is_geographic:
        raise ValueError("Sites must be in a projected CRS; call project_sites first")

    rng = np.random.default_rng(rng)
    policy = sampling_policy if sampling_policy is not None else SamplingPolicy()
    n = len(sites)

    dx, dy = sample_shifts(n, max_shift, rng)
    footprints = policy.sample_many(
        sites['deposit_type'].tolist(), sites['tonnage'].to_numpy(), rng=rng
    )

    centers = shapely.points(sites.geometry.x.to_numpy() + dx, sites.geometry.y.to_numpy() + dy)
    polygons = shapely.buffer(
        centers,
        polygon_radius(footprints['radius_m'].to_numpy(), resolution),
        quad_segs=resolution,
    )

    buffers = gpd.GeoDataFrame(
        {
            'draw': np.full(n, draw, dtype=int),
            'site_id': sites['site_id'].to_numpy(),
            'deposit_type': sites['deposit_type'].to_numpy(),
            'tonnage': sites['tonnage'].to_numpy(),
            'policy': footprints['policy'].to_numpy(),
            'multiplier': footprints['multiplier'].to_numpy(),
            'multiplier_clipped_low': footprints['multiplier_clipped_low'].to_numpy(),
            'multiplier_clipped_high': footprints['multiplier_clipped_high'].to_numpy(),
            'area_km2': footprints['area_km2'].to_numpy(),
            'radius_m': footprints['radius_m'].to_numpy(),
            'shift_x': dx,
            'shift_y': dy,
        },
        geometry=polygons,
        crs=sites.crs,
    )
    return buffers[BUFFER_COLUMNS]


def _simulate_draw(sites, max_shift, sampling_policy, draw, seed, resolution, output_dir):
    """Worker entry point: one draw, optionally written to disk."""
    buffers = generate_draw(
        sites,
        max_shift=max_shift,
        sampling_policy=sampling_policy,
        draw=draw,
        rng=np.random.default_rng(seed),
        resolution=resolution,
    )
    if output_dir is not None:
        return save_draw(buffers, output_dir, draw)
    return buffers


class BufferSimulator:
    """
    Monte Carlo generator of stochastic mining footprints.

    Process:
    1. Project sites to the metric CRS (once)
    2. Spawn one independent seed per draw from ``random_state``
    3. For every draw, jitter each site and sample its footprint area
    4. Return the draws in memory or persist one GeoPackage per draw
    """

    def __init__(
        self,
        sites: gpd.GeoDataFrame,
        sampling_policy: Optional[SamplingPolicy] = None,
        max_shift: float = MAX_SHIFT_M,
        crs=PROJECTED_CRS,
        resolution: int = BUFFER_RESOLUTION,
        random_state: Optional[int] = RANDOM_SEED
    ):
        """
        Initialize simulator.

        Parameters
        ----------
        sites : gpd.GeoDataFrame
            Validated sites (from SiteLoader)
        sampling_policy : SamplingPolicy, optional
            Footprint sampler
        max_shift : float
            Maximum location offset per axis, metres
        crs : str or CRS
            Projected CRS for buffering (equal-area recommended)
        resolution : int
            Segments per quarter circle
        random_state : int, optional
            Root seed for the ensemble
        """
        if max_shift < 0:
            raise ValueError(f"max_shift must be >= 0, got {max_shift}")
        if len(sites) == 0:
            raise ValueError("No sites to simulate")

        self.sites = project_sites(sites, crs)
        self.sampling_policy = sampling_policy if sampling_policy is not None else SamplingPolicy()
        self.max_shift = float(max_shift)
        self.crs = crs
        self.resolution = resolution
        self.random_state = random_state

        logger.info("Buffer simulator initialized")
        logger.info(f"  Sites: {len(self.sites)}")
        logger.info(f"  Max shift: {self.max_shift:,.0f} m")
        logger.info(f"  CRS: {self.crs}")
        logger.info(f"  Random seed: {self.random_state}")

    def draw_seeds(self, n_draws: int, first_draw: int = 1) -> List[np.random.SeedSequence]:
        """
        Independent seed for every draw index.

        Seeds are spawned for indices 1..(first_draw + n_draws - 1) so draw k
        gets the same stream whether it is generated alone or in a batch.
        """
        root = np.random.SeedSequence(self.random_state)
        children = root.spawn(first_draw - 1 + n_draws)
        return children[first_draw - 1:]

    def generate_draw(self, draw: int = 1, rng: RandomState = None) -> gpd.GeoDataFrame:
        """
        Generate a single draw.

        Without ``rng`` the draw's own spawned seed is used, matching what
        ``run_ensemble`` produces for that index.
        """
        if rng is None:
            rng = np.random.default_rng(self.draw_seeds(1, first_draw=draw)[0])
        return generate_draw(
            self.sites,
            max_shift=self.max_shift,
            sampling_policy=self.sampling_policy,
            draw=draw,
            rng=rng,
            resolution=self.resolution,
        )

    def run_ensemble(
        self,
        n_draws: int,
        n_jobs: int = 1,
        output_dir: Optional[Union[str, Path]] = None,
        first_draw: int = 1
    ) -> List[Union[gpd.GeoDataFrame, Path]]:
        """
        Generate ``n_draws`` draws, numbered from ``first_draw``.

        Parameters
        ----------
        n_draws : int
            Ensemble size
        n_jobs : int
            joblib workers (1 = run in-process, -1 = all cores)
        output_dir : str or Path, optional
            When given, each draw is written as draw_NNNN.gpkg and the paths
            are returned instead of the GeoDataFrames

        Returns
        -------
        list
            GeoDataFrames, or artifact paths when ``output_dir`` is set
        """
        if n_draws < 1:
            raise ValueError(f"n_draws must be >= 1, got {n_draws}")

        logger.info("=" * 80)
        logger.info("BUFFER ENSEMBLE GENERATION")
        logger.info("=" * 80)
        logger.info(f"Draws: {n_draws:,} (workers: {n_jobs})")
        if output_dir is not None:
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Writing draws to: {output_dir}")

        seeds = self.draw_seeds(n_draws, first_draw=first_draw)
        draws = range(first_draw, first_draw + n_draws)

        if n_jobs == 1:
            results = []
            for i, (draw, seed) in enumerate(zip(draws, seeds)):
                if i % max(1, n_draws // 10) == 0:
                    logger.info(f"  Draw {i:,}/{n_draws:,} ({100 * i / n_draws:.0f}%)")
                results.append(_simulate_draw(
                    self.sites, self.max_shift, self.sampling_policy, draw, seed,
                    self.resolution, output_dir,
                ))
        else:
            results = Parallel(n_jobs=n_jobs, backend='loky')(
                delayed(_simulate_draw)(
                    self.sites, self.max_shift, self.sampling_policy, draw, seed,
                    self.resolution, output_dir,
                )
                for draw, seed in zip(draws, seeds)
            )

        logger.info(f"Ensemble complete: {len(results):,} draws")
        return list(results)


def summarize_draw(buffers: gpd.GeoDataFrame) -> pd.Series:
    """Per-draw diagnostics: union area and clipping counts."""
    return pd.Series({
        'draw': int(buffers['draw'].iloc[0]) if len(buffers) else None,
        'n_sites': len(buffers),
        'union_area_km2': union_area_km2(buffers),
        'n_clipped_low': int(buffers['multiplier_clipped_low'].sum()),
        'n_clipped_high': int(buffers['multiplier_clipped_high'].sum()),
    })


def union_area_km2(buffers: gpd.GeoDataFrame) -> float:
    """Area of the union of all buffers in a draw (km², metric CRS)."""
    if len(buffers) == 0:
        return 0.0
    return float(unary_union(buffers.geometry.to_numpy()).area) / M2_PER_KM2
