"""
Data Ingestion for Mining Footprint Overlap Analysis
====================================================

This module provides validated loading for:
1. Mining property (site) tables with location, tonnage and deposit type
2. Classified protected-area rasters
3. Persisted per-draw buffer artifacts (one GeoPackage per draw)

All loaders validate before returning and log what they found, so bad
inputs fail before any simulation work begins.

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from pyproj import CRS

from .config import SITES_CRS, UNCLASSIFIED_VALUES
from .deposit_policies import MIXED_DEPOSIT_TYPE, resolve_policy_key

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DRAW_FILE_PATTERN = re.compile(r'draw_(\d+)$')


@dataclass
class DataValidationResult:
    """Outcome of validating a site table: fatal errors, warnings and site counts."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict = field(default_factory=dict)

    @property
    def n_fallback_sites(self) -> int:
        """Sites whose deposit type has no policy of its own."""
        return self.metadata.get('policy_counts', {}).get(MIXED_DEPOSIT_TYPE, 0)

    def log_results(self):
        for error in self.errors:
            logger.error(f"  - {error}")
        if self.errors:
            logger.error(f"Site table rejected ({len(self.errors)} errors)")
        for warning in self.warnings:
            logger.warning(f"  - {warning}")

        counts = self.metadata.get('policy_counts')
        if counts:
            logger.info(
                "Sites per policy: "
                + ", ".join(f"{key}={count}" for key, count in counts.items())
            )
        if self.is_valid:
            logger.info(
                f"Validation passed: {self.metadata.get('total_records', 0)} sites, "
                f"{len(self.warnings)} warnings"
            )


class SiteLoader:
    """
    Loads and validates the mining property table.

    Required fields are id, longitude, latitude, tonnage and deposit_type.
    Common alternative headers are mapped onto these names before validation.
    """

    REQUIRED_COLUMNS = ['id', 'longitude', 'latitude', 'tonnage', 'deposit_type']

    COLUMN_ALIASES = {
        'site_id': 'id',
        'property_id': 'id',
        'lon': 'longitude',
        'long': 'longitude',
        'x': 'longitude',
        'lat': 'latitude',
        'y': 'latitude',
        'tonnes': 'tonnage',
        'ore_tonnage': 'tonnage',
        'deposit': 'deposit_type',
        'deposittype': 'deposit_type',
    }

    def __init__(self, crs: str = SITES_CRS):
        self.crs = crs
        self.data: Optional[pd.DataFrame] = None
        self.validation_result: Optional[DataValidationResult] = None

    def load(self, filepath: Union[str, Path]) -> gpd.GeoDataFrame:
        """
        Load a site table from CSV or Excel.

        Parameters
        ----------
        filepath : str or Path
            Path to a .csv, .xlsx or .xls file

        Returns
        -------
        gpd.GeoDataFrame
            Columns site_id, deposit_type, tonnage, geometry (points)

        Raises
        ------
        FileNotFoundError
            If file does not exist
        ValueError
            If validation fails
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Site table not found: {filepath}")

        logger.info(f"Loading site table from: {filepath}")

        try:
            if filepath.suffix.lower() in ('.xlsx', '.xls'):
                df = pd.read_excel(filepath)
            else:
                df = pd.read_csv(filepath)
        except Exception as e:
            raise ValueError(f"Failed to read site table: {e}")

        return self.from_dataframe(df)

    def from_dataframe(self, df: pd.DataFrame) -> gpd.GeoDataFrame:
        """Validate and standardise an in-memory site table."""
        self.data = self._rename_columns(df)
        self.validation_result = self._validate()
        self.validation_result.log_results()

        if not self.validation_result.is_valid:
            raise ValueError("Site table validation failed. See log for details.")

        sites = self._standardize()

        logger.info(f"Successfully loaded {len(sites)} sites")
        counts = sites['deposit_type'].value_counts()
        for deposit_type, count in counts.items():
            logger.info(f"  {deposit_type}: {count}")

        return sites

    def _rename_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        renamed = {}
        for col in df.columns:
            key = str(col).strip().lower().replace(' ', '_')
            if key in self.REQUIRED_COLUMNS:
                renamed[col] = key
            elif key in self.COLUMN_ALIASES and self.COLUMN_ALIASES[key] not in renamed.values():
                renamed[col] = self.COLUMN_ALIASES[key]
        return df.rename(columns=renamed)

    def _validate(self) -> DataValidationResult:
        """
        Validate site table structure and content.

        Returns
        -------
        DataValidationResult
            Validation results with errors, warnings, and metadata
        """
        errors = []
        warnings = []
        metadata = {'total_records': len(self.data)}

        missing_cols = [c for c in self.REQUIRED_COLUMNS if c not in self.data.columns]
        if missing_cols:
            errors.append(f"Missing required columns: {missing_cols}")
            return DataValidationResult(False, errors, warnings, metadata)

        if len(self.data) == 0:
            errors.append("Site table has no rows")
            return DataValidationResult(False, errors, warnings, metadata)

        # deposit_type may be blank (treated as unknown); everything else may not
        strict_cols = ['id', 'longitude', 'latitude', 'tonnage']
        null_counts = self.data[strict_cols].isnull().sum()
        if null_counts.any():
            errors.append(f"Null values found: {null_counts[null_counts > 0].to_dict()}")

        n_missing_type = int(self.data['deposit_type'].isnull().sum())
        if n_missing_type:
            warnings.append(
                f"{n_missing_type} sites have no deposit type; treated as '{MIXED_DEPOSIT_TYPE}'"
            )

        # ids are compared as they will be stored: text, surrounding whitespace removed
        ids = self.data['id'].dropna().astype(str).str.strip()
        n_blank = int((ids == '').sum())
        if n_blank:
            errors.append(f"{n_blank} site ids are blank")
        duplicates = ids[ids.duplicated()]
        if len(duplicates) > 0:
            errors.append(f"Duplicate site ids: {sorted(duplicates.unique().tolist())[:10]}")

        policy_keys = self.data['deposit_type'].map(resolve_policy_key).fillna(MIXED_DEPOSIT_TYPE)
        metadata['policy_counts'] = policy_keys.value_counts().to_dict()

        for col in ('longitude', 'latitude', 'tonnage'):
            values = pd.to_numeric(self.data[col], errors='coerce')
            n_bad = int((values.isnull() & self.data[col].notnull()).sum())
            if n_bad:
                errors.append(f"'{col}' has {n_bad} non-numeric values")

        lon = pd.to_numeric(self.data['longitude'], errors='coerce')
        lat = pd.to_numeric(self.data['latitude'], errors='coerce')
        if ((lon < -180) | (lon > 180)).any():
            errors.append("Longitude values outside [-180, 180]")
        if ((lat < -90) | (lat > 90)).any():
            errors.append("Latitude values outside [-90, 90]")

        tonnage = pd.to_numeric(self.data['tonnage'], errors='coerce')
        n_nonpositive = int((tonnage <= 0).sum())
        if n_nonpositive:
            warnings.append(
                f"{n_nonpositive} sites have tonnage <= 0; their footprints take the minimum area"
            )
        if tonnage.notnull().any():
            metadata['tonnage_statistics'] = {
                'min': float(tonnage.min()),
                'max': float(tonnage.max()),
                'sum': float(tonnage.sum()),
            }

        is_valid = len(errors) == 0
        return DataValidationResult(is_valid, errors, warnings, metadata)

    def _standardize(self) -> gpd.GeoDataFrame:
        df = self.data.copy()
        df['site_id'] = df['id'].astype(str).str.strip()
        df['tonnage'] = pd.to_numeric(df['tonnage']).astype(float)
        df['deposit_type'] = (
            df['deposit_type'].fillna(MIXED_DEPOSIT_TYPE).astype(str).str.strip()
        )
        df.loc[df['deposit_type'] == '', 'deposit_type'] = MIXED_DEPOSIT_TYPE

        sites = gpd.GeoDataFrame(
            df[['site_id', 'deposit_type', 'tonnage']],
            geometry=gpd.points_from_xy(
                pd.to_numeric(df['longitude']), pd.to_numeric(df['latitude'])
            ),
            crs=self.crs,
        )
        return sites.sort_values('site_id').reset_index(drop=True)


class ClassificationLayer:
    """
    Handle on a single-band classified raster (e.g. protected-area categories).

    Only metadata is read here; pixel data is read per draw inside scoped
    ``with rasterio.open(...)`` blocks so the handle is cheap to pickle to
    parallel workers.

    Parameters
    ----------
    path : str or Path
        Raster file path
    unclassified_values : sequence of numbers
        Cell values that carry no class and are dropped like no-data
    nodata : float, optional
        Overrides the raster's own no-data value
    """

    def __init__(
        self,
        path: Union[str, Path],
        unclassified_values: Sequence = UNCLASSIFIED_VALUES,
        nodata: Optional[float] = None
    ):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Classification layer not found: {self.path}")

        with rasterio.open(self.path) as src:
            if src.crs is None:
                raise ValueError(f"Classification layer has no CRS: {self.path}")
            self.crs = CRS.from_user_input(src.crs.to_wkt())
            self.bounds = tuple(src.bounds)
            self.dtype = src.dtypes[0]
            self.resolution = src.res
            self.nodata = src.nodata if nodata is None else nodata

        self.unclassified_values = tuple(unclassified_values)

        logger.info(f"Classification layer: {self.path.name}")
        logger.info(f"  CRS: {self.crs.name}")
        logger.info(f"  Resolution: {self.resolution}, dtype: {self.dtype}, nodata: {self.nodata}")

    def open(self):
        """Open the raster for reading (use as a context manager)."""
        return rasterio.open(self.path)

    def is_class_value(self, values: np.ndarray) -> np.ndarray:
        """Boolean mask of values that represent a real class."""
        values = np.asarray(values)
        keep = ~np.isin(values, self.unclassified_values)
        if self.nodata is not None:
            keep &= values != self.nodata
        if np.issubdtype(values.dtype, np.floating):
            keep &= np.isfinite(values)
        return keep

    def __repr__(self):
        return f"ClassificationLayer('{self.path}')"


# ============================================================================
# PERSISTED DRAWS
# ============================================================================

def draw_file_path(output_dir: Union[str, Path], draw: int) -> Path:
    return Path(output_dir) / f"draw_{draw:04d}.gpkg"


def draw_index_from_path(path: Union[str, Path]) -> int:
    """Draw index encoded in a draw artifact name (draw_0007.gpkg -> 7)."""
    match = DRAW_FILE_PATTERN.search(Path(path).stem)
    if match is None:
        raise ValueError(f"Not a draw artifact name: {path}")
    return int(match.group(1))


def save_draw(buffers: gpd.GeoDataFrame, output_dir: Union[str, Path], draw: int) -> Path:
    """Write one draw's buffers as a GeoPackage and return the path."""
    path = draw_file_path(output_dir, draw)
    path.parent.mkdir(parents=True, exist_ok=True)
    buffers.to_file(path, layer='buffers', driver='GPKG')
    return path


def load_draw(path: Union[str, Path]) -> gpd.GeoDataFrame:
    """
    Read one persisted draw.

    Raises
    ------
    ValueError
        If the artifact lacks the site_id column or a CRS
    """
    path = Path(path)
    buffers = gpd.read_file(path, layer='buffers')
    if 'site_id' not in buffers.columns:
        raise ValueError(f"Draw artifact {path.name} has no 'site_id' column")
    if buffers.crs is None:
        raise ValueError(f"Draw artifact {path.name} has no CRS")
    buffers['site_id'] = buffers['site_id'].astype(str)
    if 'draw' not in buffers.columns:
        buffers['draw'] = draw_index_from_path(path)
    return buffers


def list_draw_files(draws_dir: Union[str, Path]) -> List[Path]:
    """
    All draw artifacts in a directory, ordered by draw index.

    Raises
    ------
    FileNotFoundError
        If the directory does not exist or holds no draw artifacts
    """
    draws_dir = Path(draws_dir)
    if not draws_dir.is_dir():
        raise FileNotFoundError(f"Draw directory not found: {draws_dir}")

    paths = [
        p for p in draws_dir.glob('draw_*.gpkg')
        if DRAW_FILE_PATTERN.search(p.stem)
    ]
    if not paths:
        raise FileNotFoundError(f"No draw artifacts (draw_*.gpkg) in {draws_dir}")

    return sorted(paths, key=draw_index_from_path)
