"""
Mining Footprint Overlap Model
==============================

A Monte Carlo framework for estimating how much of the land footprint of
mining properties falls inside classified areas (e.g. protected-area
categories), given uncertain site locations and footprint sizes.

Main Components:
- deposit_policies: Lognormal area-multiplier policies per deposit type
- sampling: Footprint area sampling with multiplier and area clipping
- data_ingestion: Load and validate site tables, classification rasters, draws
- buffer_simulation: Stochastic circular buffers per site and draw
- overlap: Intersection of buffers with class polygons derived from the raster
- aggregation: Multi-level zero-filled ensemble statistics
- power_analysis: Pilot-based sizing of the ensemble
- reporting / visualizations: Excel reports, CSV exports and figures

Example Usage:
    from mining_overlap.pipeline import run_full_analysis

    power, results = run_full_analysis(
        sites_path='data/mining_properties.csv',
        layer_path='data/protected_areas.tif',
        random_state=42
    )

    results.site_summary.to_csv('outputs/site_summary.csv', index=False)

Author: Mining Footprint Research Team
Version: 1.0.0
Date: 2026
"""

__version__ = '1.0.0'
__author__ = 'Mining Footprint Research Team'

from .deposit_policies import (
    DEPOSIT_TYPE_POLICIES,
    FALLBACK_POLICIES,
    resolve_policy_key,
    validate_policies
)

from .sampling import (
    AreaSamplingPolicy,
    AreaSample,
    SamplingPolicy,
    radius_from_area
)

from .data_ingestion import (
    SiteLoader,
    ClassificationLayer,
    save_draw,
    load_draw,
    list_draw_files
)

from .buffer_simulation import (
    BufferSimulator,
    generate_draw,
    summarize_draw
)

from .overlap import (
    AreaLayerPreprocessor,
    OverlapComputer,
    DrawOverlapResult,
    compute_overlaps
)

from .aggregation import (
    OverlapEnsemble,
    ResultAggregator,
    AggregatedResults,
    complete_grid,
    aggregate_results
)

from .power_analysis import (
    PowerAnalyzer,
    PowerAnalysisResult,
    one_sample_t_power,
    required_sample_size
)

__all__ = [
    # Policies and sampling
    'DEPOSIT_TYPE_POLICIES',
    'FALLBACK_POLICIES',
    'resolve_policy_key',
    'validate_policies',
    'AreaSamplingPolicy',
    'AreaSample',
    'SamplingPolicy',
    'radius_from_area',

    # Data loading
    'SiteLoader',
    'ClassificationLayer',
    'save_draw',
    'load_draw',
    'list_draw_files',

    # Simulation
    'BufferSimulator',
    'generate_draw',
    'summarize_draw',

    # Overlap
    'AreaLayerPreprocessor',
    'OverlapComputer',
    'DrawOverlapResult',
    'compute_overlaps',

    # Aggregation
    'OverlapEnsemble',
    'ResultAggregator',
    'AggregatedResults',
    'complete_grid',
    'aggregate_results',

    # Power analysis
    'PowerAnalyzer',
    'PowerAnalysisResult',
    'one_sample_t_power',
    'required_sample_size',
]
