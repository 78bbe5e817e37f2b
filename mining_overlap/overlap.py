"""
Overlap of Simulated Footprints with a Classified Area Layer
============================================================

Per draw:
1. Union the draw's buffers to bound the raster lookup
2. Read only the raster cells under that union (rasterio mask + crop)
3. Polygonise the cells, dissolve by class value and split the result into
   contiguous class polygons; no-data and unclassified cells are dropped
4. Intersect every buffer with the class polygons and measure each piece in
   the equal-area CRS (km²)

A buffer with no intersection produces no record; absence means zero and is
restored by the aggregator's zero-fill. Several pieces of the same class
under one buffer are separate records and get summed downstream.

Author: Mining Footprint Research Team
Date: 2026
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio.features
import rasterio.mask
from joblib import Parallel, delayed
from shapely.geometry import box, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .config import M2_PER_KM2, PROJECTED_CRS
from .data_ingestion import ClassificationLayer, draw_index_from_path, load_draw

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

RECORD_COLUMNS = ['draw', 'site_id', 'class_value', 'overlap_km2']

# dtypes accepted by rasterio.features.shapes
_SHAPES_INT_DTYPE = 'int32'
_SHAPES_FLOAT_DTYPE = 'float32'


def empty_records() -> pd.DataFrame:
    return pd.DataFrame({
        'draw': pd.Series(dtype=int),
        'site_id': pd.Series(dtype=str),
        'class_value': pd.Series(dtype=float),
        'overlap_km2': pd.Series(dtype=float),
    })


def _empty_class_polygons(crs) -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame({'class_value': []}, geometry=[], crs=crs)


class AreaLayerPreprocessor:
    """
    Derives class polygons from a classification raster for a region.

    Results for identical regions are cached (up to ``cache_size`` regions),
    which helps when several draws share the same extent.
    """

    def __init__(self, layer: ClassificationLayer, all_touched: bool = True, cache_size: int = 8):
        self.layer = layer
        self.all_touched = all_touched
        self.cache_size = cache_size
        self._cache = OrderedDict()

    def class_polygons(self, region: BaseGeometry, region_crs=None) -> gpd.GeoDataFrame:
        """
        Class polygons under ``region``, in the layer CRS.

        Parameters
        ----------
        region : shapely geometry
            Lookup region (typically the union of one draw's buffers)
        region_crs : CRS, optional
            CRS of ``region``; defaults to the layer CRS

        Returns
        -------
        gpd.GeoDataFrame
            Columns class_value, geometry; one row per contiguous region of
            one class
        """
        if region is None or region.is_empty:
            return _empty_class_polygons(self.layer.crs)

        if region_crs is not None:
            series = gpd.GeoSeries([region], crs=region_crs)
            if series.crs != self.layer.crs:
                region = series.to_crs(self.layer.crs).iloc[0]
        if region.is_empty:
            return _empty_class_polygons(self.layer.crs)

        key = region.wkb
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key].copy()

        polygons = self._extract(region)

        if self.cache_size > 0:
            self._cache[key] = polygons
            if len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)
        return polygons.copy()

    def _extract(self, region: BaseGeometry) -> gpd.GeoDataFrame:
        with self.layer.open() as src:
            if region.intersection(box(*src.bounds)).area == 0:
                logger.debug("Region falls outside the classification layer")
                return _empty_class_polygons(self.layer.crs)

            data, transform = rasterio.mask.mask(
                src,
                [mapping(region)],
                crop=True,
                all_touched=self.all_touched,
                filled=False,
                indexes=1,
            )

        values = np.ma.getdata(data)
        valid = ~np.ma.getmaskarray(data) & self.layer.is_class_value(values)
        if not valid.any():
            return _empty_class_polygons(self.layer.crs)

        if np.issubdtype(values.dtype, np.integer):
            source = values.astype(_SHAPES_INT_DTYPE)
        else:
            source = values.astype(_SHAPES_FLOAT_DTYPE)

        records = [
            {'class_value': value, 'geometry': shape(geom)}
            for geom, value in rasterio.features.shapes(source, mask=valid, transform=transform)
        ]
        cells = gpd.GeoDataFrame(records, geometry='geometry', crs=self.layer.crs)
        if np.issubdtype(values.dtype, np.integer):
            cells['class_value'] = cells['class_value'].astype(int)

        dissolved = cells.dissolve(by='class_value', as_index=False)
        parts = dissolved.explode(index_parts=False).reset_index(drop=True)
        return parts[['class_value', 'geometry']]


@dataclass(frozen=True)
class DrawOverlapResult:
    """Outcome of processing one draw"""
    draw: int
    records: pd.DataFrame
    succeeded: bool = True
    error: Optional[str] = None

    @property
    def n_records(self) -> int:
        return len(self.records)


class OverlapComputer:
    """
    Intersects simulated buffers with a classified area layer.

    Parameters
    ----------
    layer : ClassificationLayer
        Classified raster
    area_crs : str or CRS
        Equal-area CRS in which overlap areas are measured (metres)
    preprocessor : AreaLayerPreprocessor, optional
        Shared class-polygon extractor (created when omitted)
    """

    def __init__(
        self,
        layer: ClassificationLayer,
        area_crs=PROJECTED_CRS,
        preprocessor: Optional[AreaLayerPreprocessor] = None
    ):
        self.layer = layer
        self.area_crs = area_crs
        self.preprocessor = preprocessor if preprocessor is not None else AreaLayerPreprocessor(layer)

    def compute_overlaps(self, draw_buffers: gpd.GeoDataFrame) -> pd.DataFrame:
        """
        Overlap records for one draw.

        Parameters
        ----------
        draw_buffers : gpd.GeoDataFrame
            One buffer per site with draw, site_id, geometry

        Returns
        -------
        pd.DataFrame
            Columns draw, site_id, class_value, overlap_km2; one row per
            non-empty (site, class polygon) intersection
        """
        if len(draw_buffers) == 0:
            return empty_records()
        if draw_buffers.crs is None:
            raise ValueError("Draw buffers have no CRS")

        buffers = draw_buffers[['draw', 'site_id', 'geometry']]
        if buffers.crs != self.layer.crs:
            logger.debug(f"Reprojecting buffers {buffers.crs} -> layer CRS")
            buffers = buffers.to_crs(self.layer.crs)

        invalid = ~buffers.is_valid
        if invalid.any():
            raise ValueError(f"{int(invalid.sum())} invalid buffer geometries")

        region = unary_union(buffers.geometry.to_numpy())
        classes = self.preprocessor.class_polygons(region)
        if classes.empty:
            return empty_records()

        pieces = gpd.overlay(buffers, classes, how='intersection', keep_geom_type=True)
        pieces = pieces[~pieces.is_empty]
        if pieces.empty:
            return empty_records()

        if pieces.crs != self.area_crs:
            pieces = pieces.to_crs(self.area_crs)

        records = pd.DataFrame({
            'draw': pieces['draw'].astype(int).to_numpy(),
            'site_id': pieces['site_id'].astype(str).to_numpy(),
            'class_value': pieces['class_value'].to_numpy(),
            'overlap_km2': pieces.geometry.area.to_numpy() / M2_PER_KM2,
        })
        records = records[records['overlap_km2'] > 0]
        return records.sort_values(['site_id', 'class_value']).reset_index(drop=True)

    def process_draw(
        self,
        source: Union[gpd.GeoDataFrame, str, Path],
        draw: Optional[int] = None
    ) -> DrawOverlapResult:
        """
        Load (if needed) and process one draw, isolating failures.

        A draw that raises (unreadable artifact, invalid geometry, raster read
        error) comes back with ``succeeded=False`` and is left out of the
        ensemble instead of aborting the run.
        """
        try:
            if isinstance(source, (str, Path)):
                if draw is None:
                    draw = draw_index_from_path(source)
                buffers = load_draw(source)
            else:
                buffers = source
                if draw is None:
                    draw = int(buffers['draw'].iloc[0])
            records = self.compute_overlaps(buffers)
        except Exception as e:
            logger.warning(f"Draw {draw} failed and is excluded from the ensemble: {e}")
            return DrawOverlapResult(
                draw=-1 if draw is None else int(draw),
                records=empty_records(),
                succeeded=False,
                error=f"{type(e).__name__}: {e}",
            )
        return DrawOverlapResult(draw=int(draw), records=records)

    def process_draws(
        self,
        sources: Iterable[Union[gpd.GeoDataFrame, str, Path]],
        n_jobs: int = 1
    ) -> List[DrawOverlapResult]:
        """
        Process many draws (paths or GeoDataFrames).

        Raises
        ------
        ValueError
            If ``sources`` is empty
        """
        sources = list(sources)
        if not sources:
            raise ValueError("No draws to process")

        n_draws = len(sources)
        logger.info("=" * 80)
        logger.info("OVERLAP COMPUTATION")
        logger.info("=" * 80)
        logger.info(f"Draws: {n_draws:,} (workers: {n_jobs})")

        if n_jobs == 1:
            results = []
            for i, source in enumerate(sources):
                if i % max(1, n_draws // 10) == 0:
                    logger.info(f"  Draw {i:,}/{n_draws:,} ({100 * i / n_draws:.0f}%)")
                results.append(self.process_draw(source))
        else:
            results = Parallel(n_jobs=n_jobs, backend='loky')(
                delayed(self.process_draw)(source) for source in sources
            )

        n_failed = sum(not r.succeeded for r in results)
        n_records = sum(r.n_records for r in results)
        logger.info(f"Overlap computation complete: {n_records:,} records")
        if n_failed:
            logger.warning(f"{n_failed} of {n_draws} draws failed and were excluded")
        return list(results)


def compute_overlaps(draw_buffers: gpd.GeoDataFrame, area_layer: ClassificationLayer,
                     area_crs=PROJECTED_CRS) -> pd.DataFrame:
    """Overlap records for one draw against a classification layer."""
    return OverlapComputer(area_layer, area_crs=area_crs).compute_overlaps(draw_buffers)
