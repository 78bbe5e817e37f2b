"""
Report writers: Excel workbooks (openpyxl) and CSV copies of summary tables.
"""

import logging
from pathlib import Path
from typing import Dict, List, Union

import pandas as pd

from .aggregation import AggregatedResults
from .power_analysis import PowerAnalysisResult

logger = logging.getLogger(__name__)

# Excel caps sheet names at 31 characters
MAX_SHEET_NAME = 31


def _write_workbook(sheets: Dict[str, pd.DataFrame], output_path: Union[str, Path]) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with pd.ExcelWriter(output_path, engine='openpyxl') as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name[:MAX_SHEET_NAME], index=False)

    logger.info(f"Wrote {len(sheets)} sheets to: {output_path}")
    return output_path


def write_overlap_report(results: AggregatedResults, output_path: Union[str, Path]) -> Path:
    """
    Write the overlap workbook.

    Sheets: raw_overlaps, site_class_summary, site_summary, class_summary,
    run_info, failed_draws.

    Parameters
    ----------
    results : AggregatedResults
        Output of ResultAggregator.aggregate
    output_path : str or Path
        Target .xlsx file (parent directories are created)

    Returns
    -------
    Path
        The written workbook
    """
    return _write_workbook(results.to_sheets(), output_path)


def write_power_report(result: PowerAnalysisResult, output_path: Union[str, Path]) -> Path:
    """Write the pilot table and the power summary to a workbook."""
    sheets = {
        'pilot_draws': result.pilot_draws,
        'summary': result.summary(),
    }
    return _write_workbook(sheets, output_path)


def write_summary_csvs(results: AggregatedResults, output_dir: Union[str, Path]) -> List[Path]:
    """
    CSV copy of every report sheet, one file per sheet.

    Returns
    -------
    list of Path
        Written files, in sheet order
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for name, df in results.to_sheets().items():
        path = output_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        paths.append(path)
    logger.info(f"Exported {len(paths)} summary tables to: {output_dir}")
    return paths
