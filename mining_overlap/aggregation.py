"""
Ensemble Aggregation of Overlap Records
=======================================

Reduces per-draw overlap records into summary tables across the Monte Carlo
ensemble. Geometry is finished by the time records get here: every step below
is a grouped numeric reduction over already measured areas.

Dissolve levels:
1. (draw, site, class)  - sum sub-part records
2. (site, class)        - statistics across draws
3. (draw, site)         - sum over classes, zero-filled over draws × sites,
                          tonnage joined once per site; statistics per site
4. (draw, class)        - area and tonnage summed over sites (a site's
                          tonnage counted once per draw and class),
                          zero-filled over draws × classes; statistics per class

Statistics per group: mean, sd (ddof=1), min, max and an empirical 95% CI
(2.5th / 97.5th percentiles).

Per-draw results are merged with OverlapEnsemble.merge, which is associative
and order independent, so partial ensembles can be reduced in any grouping.

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import CI_PERCENTILES
from .overlap import DrawOverlapResult, empty_records

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STAT_COLUMNS = ['n_draws', 'mean', 'sd', 'min', 'max', 'ci_lower', 'ci_upper']


# ============================================================================
# GENERIC REDUCTIONS
# ============================================================================

def complete_grid(
    values: pd.DataFrame,
    keys: Dict[str, Sequence],
    value_columns: Sequence[str],
    fill_value: float = 0.0
) -> pd.DataFrame:
    """
    Expand a partial table onto the full Cartesian product of key sets.

    Parameters
    ----------
    values : pd.DataFrame
        Partial table with one row per observed key combination
    keys : dict
        {column: all values for that key}; the grid is their product
    value_columns : sequence of str
        Columns carried over; missing combinations get ``fill_value``
    fill_value : float
        Default for absent combinations

    Returns
    -------
    pd.DataFrame
        Exactly prod(len(k) for k in keys) rows, key columns first

    Raises
    ------
    ValueError
        If ``values`` repeats a key combination or holds keys outside the grid

    Examples
    --------
    >>> partial = pd.DataFrame({'draw': [1], 'site': ['a'], 'area': [2.0]})
    >>> complete_grid(partial, {'draw': [1, 2], 'site': ['a']}, ['area'])
       draw site  area
    0     1    a   2.0
    1     2    a   0.0
    """
    names = list(keys)
    value_columns = list(value_columns)

    if len(names) == 1:
        index = pd.Index(list(keys[names[0]]), name=names[0])
    else:
        index = pd.MultiIndex.from_product([list(keys[k]) for k in names], names=names)

    if values.duplicated(subset=names).any():
        raise ValueError(f"Duplicate key combinations in values for {names}")

    indexed = values.set_index(names if len(names) > 1 else names[0])[value_columns]
    outside = ~indexed.index.isin(index)
    if outside.any():
        raise ValueError(
            f"{int(outside.sum())} rows have keys outside the grid, e.g. "
            f"{indexed.index[outside][0]}"
        )

    full = indexed.reindex(index, fill_value=fill_value)
    return full.reset_index()


def ensemble_statistics(
    df: pd.DataFrame,
    group_cols: Sequence[str],
    value_col: str,
    percentiles: Tuple[float, float] = CI_PERCENTILES
) -> pd.DataFrame:
    """
    Cross-draw statistics of ``value_col`` per group.

    Returns columns group_cols + n_draws, mean, sd, min, max, ci_lower,
    ci_upper. ``sd`` is the sample standard deviation (NaN for one draw).
    """
    lo, hi = percentiles
    group_cols = list(group_cols)
    if df.empty:
        return pd.DataFrame(columns=group_cols + STAT_COLUMNS)

    stats = df.groupby(group_cols)[value_col].agg(
        n_draws='count',
        mean='mean',
        sd='std',
        min='min',
        max='max',
        ci_lower=lambda x: np.percentile(x, lo),
        ci_upper=lambda x: np.percentile(x, hi),
    )
    return stats.reset_index()


# ============================================================================
# ENSEMBLE CONTAINER
# ============================================================================

@dataclass(frozen=True)
class OverlapEnsemble:
    """Overlap records of a set of successful draws (plus failed draw ids)"""
    draws: Tuple[int, ...] = ()
    records: pd.DataFrame = field(default_factory=empty_records)
    failed_draws: Tuple[int, ...] = ()

    @classmethod
    def from_result(cls, result: DrawOverlapResult) -> 'OverlapEnsemble':
        if not result.succeeded:
            return cls(failed_draws=(result.draw,))
        return cls(draws=(result.draw,), records=result.records)

    @property
    def n_draws(self) -> int:
        return len(self.draws)

    def merge(self, other: 'OverlapEnsemble') -> 'OverlapEnsemble':
        """
        Combine two disjoint ensembles.

        Raises
        ------
        ValueError
            If both ensembles contain the same successful draw
        """
        shared = set(self.draws) & set(other.draws)
        if shared:
            raise ValueError(f"Draws present in both ensembles: {sorted(shared)[:10]}")

        frames = [r for r in (self.records, other.records) if len(r)]
        if frames:
            records = pd.concat(frames, ignore_index=True)
        else:
            records = empty_records()

        draws = set(self.draws) | set(other.draws)
        # a draw that succeeded in one part supersedes a failed attempt elsewhere
        failed = (set(self.failed_draws) | set(other.failed_draws)) - draws
        return OverlapEnsemble(
            draws=tuple(sorted(draws)),
            records=records,
            failed_draws=tuple(sorted(failed)),
        )


def merge_ensembles(parts: Iterable[OverlapEnsemble]) -> OverlapEnsemble:
    """Reduce any number of partial ensembles into one."""
    return reduce(OverlapEnsemble.merge, parts, OverlapEnsemble())


def ensemble_from_results(results: Iterable[DrawOverlapResult]) -> OverlapEnsemble:
    """Build an ensemble from per-draw results."""
    return merge_ensembles(OverlapEnsemble.from_result(r) for r in results)


# ============================================================================
# AGGREGATION
# ============================================================================

@dataclass
class AggregatedResults:
    """All summary views of one ensemble"""
    raw_records: pd.DataFrame
    draw_site_class: pd.DataFrame
    site_class_summary: pd.DataFrame
    draw_site_totals: pd.DataFrame
    site_summary: pd.DataFrame
    draw_class_totals: pd.DataFrame
    class_summary: pd.DataFrame
    draws: Tuple[int, ...]
    failed_draws: Tuple[int, ...] = ()

    @property
    def n_draws(self) -> int:
        return len(self.draws)

    def run_info(self) -> pd.DataFrame:
        rows = [
            ('n_draws', self.n_draws),
            ('n_failed_draws', len(self.failed_draws)),
            ('failed_draws', ', '.join(str(d) for d in self.failed_draws)),
            ('n_sites', int(self.site_summary['site_id'].nunique())),
            ('n_classes', int(self.class_summary['class_value'].nunique())),
            ('n_raw_records', len(self.raw_records)),
        ]
        return pd.DataFrame(rows, columns=['item', 'value'])

    def to_sheets(self) -> Dict[str, pd.DataFrame]:
        """Report tables keyed by sheet name."""
        return {
            'raw_overlaps': self.raw_records,
            'site_class_summary': self.site_class_summary,
            'site_summary': self.site_summary,
            'class_summary': self.class_summary,
            'run_info': self.run_info(),
            'failed_draws': pd.DataFrame({'draw': list(self.failed_draws)}, dtype=int),
        }


class ResultAggregator:
    """
    Multi-level reduction of overlap records across the ensemble.

    Parameters
    ----------
    sites : pd.DataFrame
        Site table with site_id and tonnage (deposit_type carried if present)
    class_values : sequence, optional
        Full set of class values for the per-class zero-fill; defaults to the
        classes observed in the ensemble
    percentiles : (float, float)
        Empirical CI percentiles
    """

    def __init__(
        self,
        sites: pd.DataFrame,
        class_values: Optional[Sequence] = None,
        percentiles: Tuple[float, float] = CI_PERCENTILES
    ):
        missing = {'site_id', 'tonnage'} - set(sites.columns)
        if missing:
            raise ValueError(f"Site table missing columns: {sorted(missing)}")

        meta_cols = ['site_id', 'tonnage'] + (['deposit_type'] if 'deposit_type' in sites.columns else [])
        site_meta = pd.DataFrame(sites[meta_cols]).copy()
        site_meta['site_id'] = site_meta['site_id'].astype(str)
        if site_meta['site_id'].duplicated().any():
            raise ValueError("Site table has duplicate site_id values")

        self.site_meta = site_meta.sort_values('site_id').reset_index(drop=True)
        self.site_ids = self.site_meta['site_id'].tolist()
        self.class_values = None if class_values is None else sorted(class_values)
        self.percentiles = percentiles

    def aggregate(self, ensemble: OverlapEnsemble) -> AggregatedResults:
        """
        Build every summary view.

        Raises
        ------
        ValueError
            If the ensemble has no successful draws or references unknown sites
        """
        if ensemble.n_draws == 0:
            raise ValueError("No successful draws to aggregate")

        logger.info("=" * 80)
        logger.info("AGGREGATING OVERLAP RESULTS")
        logger.info("=" * 80)
        logger.info(f"Draws: {ensemble.n_draws:,} (failed: {len(ensemble.failed_draws)})")
        logger.info(f"Sites: {len(self.site_ids):,}")

        records = ensemble.records.copy()
        records['site_id'] = records['site_id'].astype(str)
        unknown = set(records['site_id']) - set(self.site_ids)
        if unknown:
            raise ValueError(f"Overlap records reference unknown sites: {sorted(unknown)[:10]}")
        stray = set(records['draw']) - set(ensemble.draws)
        if stray:
            raise ValueError(f"Overlap records for draws not in the ensemble: {sorted(stray)[:10]}")

        draws = list(ensemble.draws)
        level1 = self.draw_site_class_totals(records)
        classes = self.class_values if self.class_values is not None else sorted(level1['class_value'].unique())
        logger.info(f"Classes: {classes}")

        draw_site = self.draw_site_totals(level1, draws)
        draw_class = self.draw_class_totals(level1, draws, classes)

        results = AggregatedResults(
            raw_records=records.sort_values(['draw', 'site_id', 'class_value']).reset_index(drop=True),
            draw_site_class=level1,
            site_class_summary=self.summarize_site_class(level1, draws),
            draw_site_totals=draw_site,
            site_summary=self.summarize_sites(draw_site),
            draw_class_totals=draw_class,
            class_summary=self.summarize_classes(draw_class),
            draws=tuple(draws),
            failed_draws=tuple(ensemble.failed_draws),
        )
        logger.info(f"Aggregation complete: {len(results.site_summary)} sites, "
                    f"{len(results.class_summary)} classes")
        return results

    # ── Level 1 ──────────────────────────────────────────────────────────────
    def draw_site_class_totals(self, records: pd.DataFrame) -> pd.DataFrame:
        """Sum sub-part records per (draw, site, class)."""
        if records.empty:
            return pd.DataFrame({
                'draw': pd.Series(dtype=int),
                'site_id': pd.Series(dtype=str),
                'class_value': pd.Series(dtype=float),
                'overlap_km2': pd.Series(dtype=float),
                'n_parts': pd.Series(dtype=int),
            })
        return (
            records.groupby(['draw', 'site_id', 'class_value'], as_index=False)
            .agg(overlap_km2=('overlap_km2', 'sum'), n_parts=('overlap_km2', 'size'))
        )

    # ── Level 2 ──────────────────────────────────────────────────────────────
    def summarize_site_class(self, level1: pd.DataFrame, draws: List[int]) -> pd.DataFrame:
        """
        Statistics per (site, class) across all successful draws.

        Every pair seen in at least one draw is zero-filled over the draws
        where it did not occur.
        """
        pairs = level1[['site_id', 'class_value']].drop_duplicates()
        if pairs.empty:
            return pd.DataFrame(columns=['site_id', 'class_value'] + STAT_COLUMNS + ['n_draws_overlapping'])

        grid = pairs.merge(pd.DataFrame({'draw': draws}), how='cross')
        full = grid.merge(
            level1[['draw', 'site_id', 'class_value', 'overlap_km2']],
            on=['draw', 'site_id', 'class_value'],
            how='left',
        )
        full['overlap_km2'] = full['overlap_km2'].fillna(0.0)

        summary = ensemble_statistics(full, ['site_id', 'class_value'], 'overlap_km2', self.percentiles)
        hits = (
            level1.groupby(['site_id', 'class_value']).size()
            .rename('n_draws_overlapping').reset_index()
        )
        return summary.merge(hits, on=['site_id', 'class_value'], how='left')

    # ── Level 3 ──────────────────────────────────────────────────────────────
    def draw_site_totals(self, level1: pd.DataFrame, draws: List[int]) -> pd.DataFrame:
        """Overlap per (draw, site) over all classes, zero-filled, with tonnage."""
        per_site = level1.groupby(['draw', 'site_id'], as_index=False)['overlap_km2'].sum()
        full = complete_grid(
            per_site, {'draw': draws, 'site_id': self.site_ids}, ['overlap_km2']
        )
        return full.merge(self.site_meta, on='site_id', how='left')

    def summarize_sites(self, draw_site: pd.DataFrame) -> pd.DataFrame:
        """Per-site statistics with tonnage carried through unchanged."""
        summary = ensemble_statistics(draw_site, ['site_id'], 'overlap_km2', self.percentiles)
        summary = self.site_meta.merge(summary, on='site_id', how='left')
        return summary

    # ── Level 4 ──────────────────────────────────────────────────────────────
    def draw_class_totals(self, level1: pd.DataFrame, draws: List[int], classes: Sequence) -> pd.DataFrame:
        """
        Area, tonnage and site count per (draw, class), zero-filled.

        level1 holds one row per (draw, site, class), so joining tonnage here
        attaches each site's tonnage once per (draw, class) no matter how many
        fragments it overlapped.
        """
        if len(classes) == 0:
            return pd.DataFrame(columns=['draw', 'class_value', 'overlap_km2', 'tonnage', 'n_sites'])

        with_tonnage = level1.merge(self.site_meta[['site_id', 'tonnage']], on='site_id', how='left')
        per_class = with_tonnage.groupby(['draw', 'class_value'], as_index=False).agg(
            overlap_km2=('overlap_km2', 'sum'),
            tonnage=('tonnage', 'sum'),
            n_sites=('site_id', 'nunique'),
        )
        outside = ~per_class['class_value'].isin(classes)
        if outside.any():
            logger.warning(
                f"Ignoring classes not in the configured class set: "
                f"{sorted(per_class.loc[outside, 'class_value'].unique())}"
            )
            per_class = per_class[~outside]
        return complete_grid(
            per_class,
            {'draw': draws, 'class_value': list(classes)},
            ['overlap_km2', 'tonnage', 'n_sites'],
        )

    def summarize_classes(self, draw_class: pd.DataFrame) -> pd.DataFrame:
        """Per-class area statistics plus tonnage mean/sd."""
        area = ensemble_statistics(draw_class, ['class_value'], 'overlap_km2', self.percentiles)
        if draw_class.empty:
            return area.assign(tonnage_mean=[], tonnage_sd=[], n_sites_mean=[])
        tonnage = draw_class.groupby('class_value').agg(
            tonnage_mean=('tonnage', 'mean'),
            tonnage_sd=('tonnage', 'std'),
            n_sites_mean=('n_sites', 'mean'),
        ).reset_index()
        return area.merge(tonnage, on='class_value', how='left')


def aggregate_results(results: Iterable[DrawOverlapResult], sites: pd.DataFrame,
                      class_values: Optional[Sequence] = None) -> AggregatedResults:
    """Merge per-draw results and build all summary tables."""
    ensemble = ensemble_from_results(results)
    return ResultAggregator(sites, class_values=class_values).aggregate(ensemble)
