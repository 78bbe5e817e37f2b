"""
Figures for the Mining Footprint Overlap Analysis
=================================================

1. Pilot diagnostics - union-area histogram and running mean of the pilot
   ensemble, used to sanity-check the power analysis
2. Site intervals - mean overlap per site with empirical CI whiskers for the
   sites with the largest expected overlap

Design principles:
- Clean, minimal aesthetic (no top/right spines, light dashed grid)
- Black dotted lines for uncertainty bounds

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import FIGSIZE_STANDARD, FIGURE_DPI, FIGURE_FORMAT, TOP_N_SITES

logger = logging.getLogger(__name__)

# Set publication-quality defaults
plt.rcParams['font.family'] = 'sans-serif'
plt.rcParams['font.sans-serif'] = ['Arial', 'Helvetica', 'DejaVu Sans']
plt.rcParams['font.size'] = 10
plt.rcParams['axes.linewidth'] = 0.8
plt.rcParams['grid.linewidth'] = 0.5
plt.rcParams['lines.linewidth'] = 1.5
plt.rcParams['savefig.bbox'] = 'tight'

PRIMARY_COLOR = '#2E86AB'
ACCENT_COLOR = '#C73E1D'


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def setup_figure(figsize=FIGSIZE_STANDARD, ncols: int = 1):
    """Create figure with publication settings"""
    fig, axes = plt.subplots(1, ncols, figsize=figsize)
    for ax in np.atleast_1d(axes):
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)
        ax.grid(True, alpha=0.3, linestyle='--', linewidth=0.5)
    return fig, axes


def save_figure(fig, filepath: Path, formats=FIGURE_FORMAT) -> List[Path]:
    """Save figure in every requested format"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    written = []
    for fmt in formats:
        output_path = filepath.with_suffix(f'.{fmt}')
        fig.savefig(output_path, format=fmt, bbox_inches='tight', dpi=FIGURE_DPI)
        logger.info(f"Saved figure: {output_path}")
        written.append(output_path)
    return written


# ============================================================================
# PILOT DIAGNOSTICS
# ============================================================================

def plot_pilot_union_areas(
    pilot_draws: pd.DataFrame,
    output_path: Optional[Path] = None,
    figsize: Tuple[float, float] = (12, 5)
) -> plt.Figure:
    """
    Histogram and running mean of pilot union areas.

    Parameters
    ----------
    pilot_draws : pd.DataFrame
        Pilot table with draw and union_area_km2
    output_path : Path, optional
        Where to save the figure (extension replaced per format)
    figsize : tuple
        Figure size

    Returns
    -------
    plt.Figure
    """
    if pilot_draws.empty:
        raise ValueError("Pilot table is empty")

    values = pilot_draws.sort_values('draw')['union_area_km2'].to_numpy()
    n = np.arange(1, len(values) + 1)
    running_mean = np.cumsum(values) / n
    mean = values.mean()

    fig, (ax_hist, ax_run) = setup_figure(figsize, ncols=2)

    bins = min(30, max(5, len(values) // 3))
    ax_hist.hist(values, bins=bins, color=PRIMARY_COLOR, alpha=0.7, edgecolor='white')
    ax_hist.axvline(mean, color=ACCENT_COLOR, linewidth=1.5, label=f'Mean = {mean:,.1f} km²')
    ax_hist.set_xlabel('Union area of all footprints (km²)')
    ax_hist.set_ylabel('Pilot draws')
    ax_hist.legend(frameon=False)

    ax_run.plot(n, running_mean, color=PRIMARY_COLOR)
    if len(values) > 1:
        # standard error band of the running mean
        running_sd = pd.Series(values).expanding().std(ddof=1).to_numpy()
        se = running_sd / np.sqrt(n)
        ax_run.plot(n, running_mean + 1.96 * se, color='black', linestyle=':', linewidth=1)
        ax_run.plot(n, running_mean - 1.96 * se, color='black', linestyle=':', linewidth=1)
    ax_run.axhline(mean, color=ACCENT_COLOR, linewidth=1, alpha=0.6)
    ax_run.set_xlabel('Draw')
    ax_run.set_ylabel('Running mean union area (km²)')

    fig.suptitle(f'Pilot ensemble ({len(values)} draws)', fontweight='bold')
    fig.tight_layout()

    if output_path is not None:
        save_figure(fig, output_path)
    return fig


# ============================================================================
# SITE OVERLAP INTERVALS
# ============================================================================

def plot_site_overlap_intervals(
    site_summary: pd.DataFrame,
    top_n: int = TOP_N_SITES,
    output_path: Optional[Path] = None,
    figsize: Optional[Tuple[float, float]] = None
) -> plt.Figure:
    """
    Mean overlap per site with CI whiskers, largest ``top_n`` sites.

    Sites with zero mean overlap are left out; if none remain the axes carry a
    note instead of bars.
    """
    ranked = site_summary[site_summary['mean'] > 0].nlargest(top_n, 'mean')
    ranked = ranked.iloc[::-1]

    if figsize is None:
        figsize = (FIGSIZE_STANDARD[0], max(3.0, 0.3 * len(ranked) + 1.5))
    fig, ax = setup_figure(figsize)

    if ranked.empty:
        ax.text(0.5, 0.5, 'No site overlaps the classified area',
                ha='center', va='center', transform=ax.transAxes)
    else:
        y = np.arange(len(ranked))
        lower = (ranked['mean'] - ranked['ci_lower']).clip(lower=0)
        upper = (ranked['ci_upper'] - ranked['mean']).clip(lower=0)
        ax.errorbar(ranked['mean'], y, xerr=[lower, upper], fmt='o',
                    color=PRIMARY_COLOR, ecolor='black', elinewidth=0.8, capsize=2)
        ax.set_yticks(y)
        ax.set_yticklabels(ranked['site_id'].astype(str))
        ax.set_ylabel('Site')

    ax.set_xlabel('Overlap with classified area (km²)')
    ax.set_title(f'Expected overlap by site (top {len(ranked)})', fontweight='bold')
    fig.tight_layout()

    if output_path is not None:
        save_figure(fig, output_path)
    return fig
