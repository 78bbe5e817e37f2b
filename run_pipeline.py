#!/usr/bin/env python3
"""
Mining Footprint Overlap Model: Full Pipeline
==============================================

Runs the analysis from the site table and classification raster to the
Excel reports and figures. Execute from the repository root:

    python run_pipeline.py                      # Run everything
    python run_pipeline.py --step 1             # Only the power analysis
    python run_pipeline.py --from 3             # Re-run overlaps on existing draws
    python run_pipeline.py --n-draws 500        # Fixed ensemble, skip Step 1

Steps:
    1.  Power analysis (pilot ensemble) → suggested number of draws
    2.  Buffer draw generation → outputs/draws/draw_NNNN.gpkg
    3.  Overlap computation + aggregation → outputs/reports/overlap_report.xlsx

Author: Mining Footprint Research Team
Date: 2026
"""

import argparse
import sys
import time
from pathlib import Path

from mining_overlap import config
from mining_overlap.pipeline import generate_draws, run_overlap_analysis, run_power_analysis

STEPS = {
    1: "Power analysis (pilot ensemble)",
    2: "Buffer draw generation",
    3: "Overlap computation and aggregation",
}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Run the mining footprint overlap analysis pipeline."
    )
    parser.add_argument(
        "--sites", type=Path, default=config.SITES_FILE,
        help=f"Site table, CSV or Excel (default: {config.SITES_FILE})."
    )
    parser.add_argument(
        "--layer", type=Path, default=config.CLASSIFICATION_LAYER_FILE,
        help=f"Classified raster (default: {config.CLASSIFICATION_LAYER_FILE})."
    )
    parser.add_argument(
        "--output-dir", type=Path, default=config.OUTPUTS_DIR,
        help=f"Output root (default: {config.OUTPUTS_DIR})."
    )
    parser.add_argument(
        "--n-draws", type=int, default=None,
        help="Ensemble size; skips the power analysis when given."
    )
    parser.add_argument(
        "--pilot-draws", type=int, default=config.PILOT_DRAWS,
        help=f"Pilot ensemble size for Step 1 (default: {config.PILOT_DRAWS})."
    )
    parser.add_argument(
        "--max-shift", type=float, default=config.MAX_SHIFT_M,
        help=f"Maximum location jitter per axis in metres (default: {config.MAX_SHIFT_M:g})."
    )
    parser.add_argument(
        "--seed", type=int, default=config.RANDOM_SEED,
        help=f"Random seed (default: {config.RANDOM_SEED})."
    )
    parser.add_argument(
        "--n-jobs", type=int, default=config.N_JOBS,
        help="Parallel workers, -1 for all cores (default: 1)."
    )
    parser.add_argument(
        "--step", type=int, default=None,
        help="Run only this step number (1–3)."
    )
    parser.add_argument(
        "--from", dest="from_step", type=int, default=1,
        help="Start from this step number (default: 1)."
    )
    parser.add_argument(
        "--no-figures", action="store_true",
        help="Skip figure generation."
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.step is not None:
        if args.step not in STEPS:
            print(f"Error: no step {args.step}. Valid range: 1–3.")
            return 1
        steps = [args.step]
    else:
        steps = [n for n in STEPS if n >= args.from_step]

    if args.n_draws is not None and args.step is None:
        steps = [n for n in steps if n != 1]

    if 2 in steps and 1 not in steps and args.n_draws is None:
        args.n_draws = config.N_DRAWS
        print(f"No power analysis in this run; using --n-draws {args.n_draws}.")

    print("=" * 70)
    print("  MINING FOOTPRINT OVERLAP MODEL PIPELINE")
    print(f"  Steps to run: {steps}")
    print("=" * 70)

    make_figures = not args.no_figures
    t_start = time.time()
    draw_paths = None

    for step in steps:
        print(f"\n{'─' * 70}")
        print(f"  Step {step}: {STEPS[step]}")
        print(f"{'─' * 70}")
        t0 = time.time()

        if step == 1:
            power = run_power_analysis(
                args.sites, args.output_dir, pilot_n=args.pilot_draws,
                max_shift=args.max_shift, random_state=args.seed,
                n_jobs=args.n_jobs, make_figures=make_figures,
            )
            if args.n_draws is None:
                args.n_draws = power.required_draws
        elif step == 2:
            draw_paths = generate_draws(
                args.sites, args.n_draws, args.output_dir,
                max_shift=args.max_shift, random_state=args.seed, n_jobs=args.n_jobs,
            )
        elif step == 3:
            run_overlap_analysis(
                args.sites, args.layer, args.output_dir, draw_paths=draw_paths,
                n_jobs=args.n_jobs, make_figures=make_figures,
            )

        print(f"\n  ✓ Done ({time.time() - t0:.1f}s)")

    total = time.time() - t_start
    print(f"\n{'=' * 70}")
    print(f"  PIPELINE COMPLETE, total time: {total / 60:.1f} minutes")
    print(f"{'=' * 70}")
    print(f"\nOutputs:")
    print(f"  Draws:   {args.output_dir / 'draws'}")
    print(f"  Reports: {args.output_dir / 'reports'}")
    print(f"  Figures: {args.output_dir / 'figures'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
