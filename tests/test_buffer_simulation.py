"""
Tests for stochastic buffer generation.

Run: pytest tests/test_buffer_simulation.py -v
"""

import numpy as np
import pandas as pd
import pytest

from mining_overlap.buffer_simulation import (
    BUFFER_COLUMNS,
    BufferSimulator,
    generate_draw,
    polygon_radius,
    project_sites,
    sample_shifts,
    summarize_draw,
    union_area_km2,
)
from mining_overlap.data_ingestion import SiteLoader, load_draw
from mining_overlap.sampling import SamplingPolicy


MAX_SHIFT = 1000.0


@pytest.fixture
def simulator(sites):
    return BufferSimulator(sites, max_shift=MAX_SHIFT, random_state=123)


class TestShifts:
    """Location jitter."""

    def test_shift_bounds(self):
        dx, dy = sample_shifts(10_000, MAX_SHIFT, np.random.default_rng(0))
        assert np.all(np.abs(dx) <= MAX_SHIFT)
        assert np.all(np.abs(dy) <= MAX_SHIFT)
        # both signs occur
        assert dx.min() < 0 < dx.max()

    def test_zero_shift(self):
        dx, dy = sample_shifts(5, 0.0, np.random.default_rng(0))
        assert np.all(dx == 0) and np.all(dy == 0)

    def test_negative_shift_raises(self):
        with pytest.raises(ValueError):
            sample_shifts(5, -1.0, np.random.default_rng(0))


class TestGenerateDraw:
    """One draw: one buffer per site with bounded area and offset."""

    def test_one_buffer_per_site(self, simulator, sites):
        buffers = simulator.generate_draw(draw=3)
        assert list(buffers.columns) == BUFFER_COLUMNS
        assert sorted(buffers['site_id']) == sorted(sites['site_id'])
        assert (buffers['draw'] == 3).all()
        assert buffers.crs.to_epsg() == 6933

    def test_offsets_and_areas_within_bounds(self, simulator):
        policy = SamplingPolicy()
        for draw in range(1, 21):
            buffers = simulator.generate_draw(draw=draw)
            assert (buffers['shift_x'].abs() <= MAX_SHIFT).all()
            assert (buffers['shift_y'].abs() <= MAX_SHIFT).all()
            for key, group in buffers.groupby('policy'):
                lo, hi = policy.area_bounds(key)
                assert group['area_km2'].between(lo, hi).all()

    def test_buffer_centred_on_shifted_site(self, simulator):
        buffers = simulator.generate_draw(draw=1)
        projected = simulator.sites.set_index('site_id').geometry
        for _, row in buffers.iterrows():
            origin = projected.loc[row['site_id']]
            centroid = row.geometry.centroid
            assert centroid.x == pytest.approx(origin.x + row['shift_x'], abs=1e-6)
            assert centroid.y == pytest.approx(origin.y + row['shift_y'], abs=1e-6)

    def test_polygon_area_equals_sampled_area(self, simulator):
        buffers = simulator.generate_draw(draw=1)
        np.testing.assert_allclose(buffers.area, buffers['area_km2'] * 1e6, rtol=1e-9)

    def test_clipped_footprint_keeps_minimum_area(self):
        """A zero-tonnage laterite site is clipped to the minimum area, polygon included."""
        sites = SiteLoader().from_dataframe(pd.DataFrame({
            'id': ['Z1'], 'longitude': [0.0], 'latitude': [0.0],
            'tonnage': [0.0], 'deposit_type': ['Laterite'],
        }))
        buffers = BufferSimulator(sites, random_state=11).generate_draw(draw=1)
        min_area, _ = SamplingPolicy().area_bounds('laterite')
        assert buffers['area_km2'].iloc[0] == min_area
        assert buffers.area.iloc[0] / 1e6 == pytest.approx(min_area, rel=1e-9)

    def test_polygon_radius(self):
        """Regular 4n-gon of the scaled radius has the disc's area."""
        radius = polygon_radius(1000.0, resolution=16)
        n = 64
        area = 0.5 * n * radius ** 2 * np.sin(2 * np.pi / n)
        assert radius > 1000.0
        assert area == pytest.approx(np.pi * 1000.0 ** 2, rel=1e-12)

    def test_geographic_sites_rejected(self, sites):
        with pytest.raises(ValueError):
            generate_draw(sites, rng=0)

    def test_project_sites(self, sites):
        projected = project_sites(sites)
        assert projected.crs.to_epsg() == 6933
        assert project_sites(projected) is projected


class TestReproducibility:
    """Seeding per draw index."""

    def test_same_seed_same_draw(self, sites):
        a = BufferSimulator(sites, random_state=7).generate_draw(draw=2)
        b = BufferSimulator(sites, random_state=7).generate_draw(draw=2)
        assert a.drop(columns='geometry').equals(b.drop(columns='geometry'))
        assert a.geometry.geom_equals(b.geometry).all()

    def test_different_draws_differ(self, simulator):
        a = simulator.generate_draw(draw=1)
        b = simulator.generate_draw(draw=2)
        assert not np.allclose(a['shift_x'], b['shift_x'])

    def test_draw_independent_of_batch(self, simulator):
        """Draw k is identical whether generated alone or within an ensemble."""
        ensemble = simulator.run_ensemble(4)
        alone = simulator.generate_draw(draw=3)
        assert np.allclose(ensemble[2]['shift_x'], alone['shift_x'])
        assert np.allclose(ensemble[2]['area_km2'], alone['area_km2'])

    def test_first_draw_offset(self, simulator):
        full = simulator.run_ensemble(5)
        tail = simulator.run_ensemble(2, first_draw=4)
        assert [int(b['draw'].iloc[0]) for b in tail] == [4, 5]
        assert np.allclose(full[4]['multiplier'], tail[1]['multiplier'])

    def test_parallel_matches_serial(self, simulator):
        serial = simulator.run_ensemble(3, n_jobs=1)
        parallel = simulator.run_ensemble(3, n_jobs=2)
        for s, p in zip(serial, parallel):
            assert np.allclose(s['radius_m'], p['radius_m'])


class TestEnsemble:
    """Ensemble runs and persisted artifacts."""

    def test_run_ensemble_writes_draws(self, simulator, tmp_path):
        paths = simulator.run_ensemble(3, output_dir=tmp_path / 'draws')
        assert [p.name for p in paths] == ['draw_0001.gpkg', 'draw_0002.gpkg', 'draw_0003.gpkg']
        loaded = load_draw(paths[1])
        assert (loaded['draw'] == 2).all()
        assert len(loaded) == len(simulator.sites)

    def test_invalid_arguments(self, sites):
        with pytest.raises(ValueError):
            BufferSimulator(sites, max_shift=-5.0)
        with pytest.raises(ValueError):
            BufferSimulator(sites.iloc[0:0])
        with pytest.raises(ValueError):
            BufferSimulator(sites).run_ensemble(0)

    def test_union_area_bounds(self, simulator):
        """Union area lies between the largest single buffer and the sum."""
        buffers = simulator.generate_draw(draw=1)
        union = union_area_km2(buffers)
        areas = buffers.area / 1e6
        assert areas.max() - 1e-9 <= union <= areas.sum() + 1e-9

    def test_summarize_draw(self, simulator):
        buffers = simulator.generate_draw(draw=9)
        summary = summarize_draw(buffers)
        assert summary['draw'] == 9
        assert summary['n_sites'] == len(buffers)
        assert summary['union_area_km2'] > 0
