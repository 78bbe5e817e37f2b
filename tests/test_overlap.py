"""
Tests for class-polygon extraction and buffer/class overlap measurement.

Geometry used throughout (halves raster, EPSG:6933, 100 m cells):
class 1 for x < 5 km, class 2 for x >= 5 km, unclassified above y = 9 km.

Run: pytest tests/test_overlap.py -v
"""

import math

import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box
from shapely.ops import unary_union

from mining_overlap.data_ingestion import save_draw
from mining_overlap.overlap import (
    RECORD_COLUMNS,
    AreaLayerPreprocessor,
    OverlapComputer,
    compute_overlaps,
)


CENTRE = ('A', 5000.0, 5000.0, 2000.0)      # straddles the class boundary
WEST = ('B', 2000.0, 3000.0, 500.0)         # entirely class 1
OUTSIDE = ('C', 30_000.0, 30_000.0, 500.0)  # off the raster
NORTH = ('D', 7000.0, 9500.0, 300.0)        # entirely unclassified


class TestAreaLayerPreprocessor:
    """Raster to class polygons."""

    def test_class_polygons_cover_region(self, halves_layer):
        pre = AreaLayerPreprocessor(halves_layer)
        region = box(4000, 4000, 6000, 6000)
        polys = pre.class_polygons(region)
        assert sorted(polys['class_value'].unique()) == [1, 2]
        assert unary_union(polys.geometry.to_numpy()).contains(region)

    def test_dissolved_to_one_part_per_class(self, halves_layer):
        pre = AreaLayerPreprocessor(halves_layer)
        polys = pre.class_polygons(box(1000, 1000, 8000, 8000))
        assert polys['class_value'].value_counts().to_dict() == {1: 1, 2: 1}

    def test_unclassified_only_region(self, halves_layer):
        pre = AreaLayerPreprocessor(halves_layer)
        assert pre.class_polygons(box(6000, 9200, 8000, 9800)).empty

    def test_region_outside_raster(self, halves_layer):
        pre = AreaLayerPreprocessor(halves_layer)
        assert pre.class_polygons(box(20_000, 20_000, 21_000, 21_000)).empty

    def test_cache_reuses_extent(self, halves_layer):
        pre = AreaLayerPreprocessor(halves_layer, cache_size=2)
        region = box(1000, 1000, 2000, 2000)
        first = pre.class_polygons(region)
        second = pre.class_polygons(region)
        assert len(pre._cache) == 1
        assert first.geometry.geom_equals(second.geometry).all()
        pre.class_polygons(box(0, 0, 500, 500))
        pre.class_polygons(box(0, 0, 600, 600))
        assert len(pre._cache) == 2


class TestComputeOverlaps:
    """Per-draw overlap records."""

    def test_half_and_half(self, halves_layer, buffer_factory):
        """A circle centred on the class boundary splits evenly."""
        buffers = buffer_factory([CENTRE])
        records = compute_overlaps(buffers, halves_layer)

        assert list(records.columns) == RECORD_COLUMNS
        assert records['class_value'].tolist() == [1, 2]
        half = buffers.area.iloc[0] / 2 / 1e6
        np.testing.assert_allclose(records['overlap_km2'], [half, half], rtol=1e-6)
        assert records['overlap_km2'].sum() == pytest.approx(math.pi * 4, rel=2e-3)

    def test_single_class(self, halves_layer, buffer_factory):
        buffers = buffer_factory([WEST])
        records = compute_overlaps(buffers, halves_layer)
        assert records['class_value'].tolist() == [1]
        assert records['overlap_km2'].iloc[0] == pytest.approx(buffers.area.iloc[0] / 1e6, rel=1e-6)

    def test_sites_without_overlap_produce_no_records(self, halves_layer, buffer_factory):
        buffers = buffer_factory([CENTRE, OUTSIDE, NORTH])
        records = compute_overlaps(buffers, halves_layer)
        assert set(records['site_id']) == {'A'}

    def test_no_overlap_at_all(self, halves_layer, buffer_factory):
        records = compute_overlaps(buffer_factory([OUTSIDE]), halves_layer)
        assert records.empty
        assert list(records.columns) == RECORD_COLUMNS

    def test_overlap_never_exceeds_buffer(self, halves_layer, buffer_factory):
        buffers = buffer_factory([CENTRE, WEST, ('E', 9800.0, 500.0, 1500.0)])
        records = compute_overlaps(buffers, halves_layer)
        per_site = records.groupby('site_id')['overlap_km2'].sum()
        areas = buffers.set_index('site_id').area / 1e6
        for site_id, total in per_site.items():
            assert total <= areas[site_id] * (1 + 1e-9)

    def test_overlapping_buffers_each_counted(self, halves_layer, buffer_factory):
        """Two sites over the same cells each get their own overlap."""
        buffers = buffer_factory([('A', 2000.0, 3000.0, 500.0), ('B', 2100.0, 3000.0, 500.0)])
        records = compute_overlaps(buffers, halves_layer)
        assert sorted(records['site_id']) == ['A', 'B']

    def test_reprojects_buffers(self, halves_layer, buffer_factory):
        """Buffers in another CRS give the same overlaps as native ones."""
        buffers = buffer_factory([CENTRE])
        native = compute_overlaps(buffers, halves_layer)
        geographic = compute_overlaps(buffers.to_crs('EPSG:4326'), halves_layer)
        np.testing.assert_allclose(geographic['overlap_km2'], native['overlap_km2'], rtol=1e-4)

    def test_missing_crs_raises(self, halves_layer, buffer_factory):
        buffers = buffer_factory([CENTRE], crs=None)
        with pytest.raises(ValueError):
            compute_overlaps(buffers, halves_layer)


class TestProcessDraws:
    """Draw-level failure isolation and batch processing."""

    def test_process_saved_draw(self, halves_layer, buffer_factory, tmp_path):
        path = save_draw(buffer_factory([CENTRE], draw=4), tmp_path, 4)
        result = OverlapComputer(halves_layer).process_draw(path)
        assert result.succeeded
        assert result.draw == 4
        assert result.n_records == 2

    def test_failed_draw_is_isolated(self, halves_layer, buffer_factory, tmp_path):
        good = save_draw(buffer_factory([CENTRE], draw=1), tmp_path, 1)
        bad = tmp_path / 'draw_0002.gpkg'
        bad.write_text('not a geopackage')

        results = OverlapComputer(halves_layer).process_draws([good, bad])
        assert [r.succeeded for r in results] == [True, False]
        assert results[1].draw == 2
        assert results[1].records.empty
        assert results[1].error

    def test_in_memory_draws(self, halves_layer, buffer_factory):
        draws = [buffer_factory([CENTRE], draw=d) for d in (1, 2)]
        results = OverlapComputer(halves_layer).process_draws(draws)
        assert [r.draw for r in results] == [1, 2]
        records = pd.concat([r.records for r in results])
        assert len(records) == 4

    def test_empty_source_list_raises(self, halves_layer):
        with pytest.raises(ValueError):
            OverlapComputer(halves_layer).process_draws([])
