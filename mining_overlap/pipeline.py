"""
End-to-end orchestration: power analysis, draw generation, overlap analysis.

Each step reads its inputs from disk and writes its outputs under one output
directory (draws/, reports/, figures/), so steps can be run separately and a
run can resume after the draws have been generated.
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import matplotlib.pyplot as plt

from .aggregation import AggregatedResults, ResultAggregator, ensemble_from_results
from .buffer_simulation import BufferSimulator
from .config import (
    EFFECT_FRACTION,
    MAX_SHIFT_M,
    N_JOBS,
    OUTPUTS_DIR,
    OVERLAP_REPORT_FILE,
    PILOT_DRAWS,
    POWER_REPORT_FILE,
    PROJECTED_CRS,
    RANDOM_SEED,
    SIG_LEVEL,
    TARGET_POWER,
    ensure_output_dirs,
)
from .data_ingestion import ClassificationLayer, SiteLoader, list_draw_files
from .overlap import OverlapComputer
from .power_analysis import PowerAnalysisResult, PowerAnalyzer
from .reporting import write_overlap_report, write_power_report, write_summary_csvs
from .visualizations import plot_pilot_union_areas, plot_site_overlap_intervals

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def run_power_analysis(
    sites_path: PathLike,
    output_dir: PathLike = OUTPUTS_DIR,
    pilot_n: int = PILOT_DRAWS,
    target_power: float = TARGET_POWER,
    sig_level: float = SIG_LEVEL,
    effect_fraction: float = EFFECT_FRACTION,
    max_shift: float = MAX_SHIFT_M,
    random_state: Optional[int] = RANDOM_SEED,
    n_jobs: int = N_JOBS,
    make_figures: bool = True
) -> PowerAnalysisResult:
    """
    Size the ensemble from a pilot run and write power_analysis.xlsx.

    Returns
    -------
    PowerAnalysisResult
    """
    dirs = ensure_output_dirs(output_dir)
    sites = SiteLoader().load(sites_path)

    analyzer = PowerAnalyzer(
        sites, max_shift=max_shift, crs=PROJECTED_CRS,
        effect_fraction=effect_fraction, random_state=random_state,
    )
    result = analyzer.estimate_required_draws(
        pilot_n=pilot_n, target_power=target_power, sig_level=sig_level, n_jobs=n_jobs
    )

    write_power_report(result, dirs['reports'] / POWER_REPORT_FILE.name)
    if make_figures:
        fig = plot_pilot_union_areas(result.pilot_draws, dirs['figures'] / 'pilot_union_areas')
        plt.close(fig)
    return result


def generate_draws(
    sites_path: PathLike,
    n_draws: int,
    output_dir: PathLike = OUTPUTS_DIR,
    max_shift: float = MAX_SHIFT_M,
    random_state: Optional[int] = RANDOM_SEED,
    n_jobs: int = N_JOBS
) -> List[Path]:
    """
    Generate and persist ``n_draws`` buffer draws (draws/draw_NNNN.gpkg).

    Draw artifacts left over from an earlier, larger run are reported but not
    removed; pass the returned paths to ``run_overlap_analysis`` to process
    exactly this ensemble.
    """
    dirs = ensure_output_dirs(output_dir)
    sites = SiteLoader().load(sites_path)

    simulator = BufferSimulator(
        sites, max_shift=max_shift, crs=PROJECTED_CRS, random_state=random_state
    )
    paths = simulator.run_ensemble(n_draws, n_jobs=n_jobs, output_dir=dirs['draws'])

    stale = set(dirs['draws'].glob('draw_*.gpkg')) - set(paths)
    if stale:
        logger.warning(f"{len(stale)} draw files from an earlier run remain in {dirs['draws']}")
    return paths


def run_overlap_analysis(
    sites_path: PathLike,
    layer_path: PathLike,
    output_dir: PathLike = OUTPUTS_DIR,
    draw_paths: Optional[Sequence[PathLike]] = None,
    class_values: Optional[Sequence] = None,
    n_jobs: int = N_JOBS,
    write_csv: bool = True,
    make_figures: bool = True
) -> AggregatedResults:
    """
    Overlap every persisted draw with the classification layer, aggregate
    and write overlap_report.xlsx.

    Parameters
    ----------
    sites_path : str or Path
        Site table used to generate the draws
    layer_path : str or Path
        Classified raster
    output_dir : str or Path
        Output root; draws are read from its draws/ folder unless
        ``draw_paths`` is given
    draw_paths : sequence, optional
        Explicit draw artifacts to process
    class_values : sequence, optional
        Full class set for per-class zero-fill (default: observed classes)

    Returns
    -------
    AggregatedResults
    """
    dirs = ensure_output_dirs(output_dir)

    # Validate every input before any overlap work
    sites = SiteLoader().load(sites_path)
    layer = ClassificationLayer(layer_path)
    if draw_paths is None:
        draw_paths = list_draw_files(dirs['draws'])
    elif len(draw_paths) == 0:
        raise ValueError("No draws to process")

    computer = OverlapComputer(layer, area_crs=PROJECTED_CRS)
    draw_results = computer.process_draws(draw_paths, n_jobs=n_jobs)

    ensemble = ensemble_from_results(draw_results)
    results = ResultAggregator(sites, class_values=class_values).aggregate(ensemble)

    write_overlap_report(results, dirs['reports'] / OVERLAP_REPORT_FILE.name)
    if write_csv:
        write_summary_csvs(results, dirs['reports'] / 'csv')
    if make_figures:
        fig = plot_site_overlap_intervals(
            results.site_summary, output_path=dirs['figures'] / 'site_overlap_intervals'
        )
        plt.close(fig)
    return results


def run_full_analysis(
    sites_path: PathLike,
    layer_path: PathLike,
    output_dir: PathLike = OUTPUTS_DIR,
    n_draws: Optional[int] = None,
    pilot_n: int = PILOT_DRAWS,
    target_power: float = TARGET_POWER,
    sig_level: float = SIG_LEVEL,
    effect_fraction: float = EFFECT_FRACTION,
    max_shift: float = MAX_SHIFT_M,
    random_state: Optional[int] = RANDOM_SEED,
    n_jobs: int = N_JOBS,
    make_figures: bool = True
) -> Tuple[Optional[PowerAnalysisResult], AggregatedResults]:
    """
    Run the complete analysis from site table and raster to reports.

    When ``n_draws`` is None the ensemble size comes from the power analysis.

    Returns
    -------
    power : PowerAnalysisResult or None
        None when ``n_draws`` was given
    results : AggregatedResults
    """
    logger.info("=" * 80)
    logger.info("FULL OVERLAP ANALYSIS PIPELINE")
    logger.info("=" * 80)

    # Fail on a missing raster before the simulation work
    ClassificationLayer(layer_path)

    power = None
    if n_draws is None:
        logger.info("\nStep 1: Power analysis...")
        power = run_power_analysis(
            sites_path, output_dir, pilot_n=pilot_n, target_power=target_power,
            sig_level=sig_level, effect_fraction=effect_fraction, max_shift=max_shift,
            random_state=random_state, n_jobs=n_jobs, make_figures=make_figures,
        )
        n_draws = power.required_draws
    else:
        logger.info(f"\nStep 1: Skipped (n_draws fixed at {n_draws:,})")

    logger.info("\nStep 2: Generating draws...")
    paths = generate_draws(
        sites_path, n_draws, output_dir, max_shift=max_shift,
        random_state=random_state, n_jobs=n_jobs,
    )

    logger.info("\nStep 3: Overlap analysis...")
    results = run_overlap_analysis(
        sites_path, layer_path, output_dir, draw_paths=paths,
        n_jobs=n_jobs, make_figures=make_figures,
    )

    logger.info("\n" + "=" * 80)
    logger.info("PIPELINE COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Draws analysed: {results.n_draws:,} (failed: {len(results.failed_draws)})")
    return power, results
