"""
Tests for site table loading, the classification layer handle and draw
persistence.

Run: pytest tests/test_data_ingestion.py -v
"""

import numpy as np
import pytest
from rasterio.transform import from_origin

from mining_overlap.data_ingestion import (
    ClassificationLayer,
    SiteLoader,
    draw_file_path,
    draw_index_from_path,
    list_draw_files,
    load_draw,
    save_draw,
)


class TestSiteLoader:
    """Validation and standardisation of the site table."""

    def test_loads_csv(self, sites_csv):
        sites = SiteLoader().load(sites_csv)
        assert len(sites) == 6
        assert list(sites.columns) == ['site_id', 'deposit_type', 'tonnage', 'geometry']
        assert sites.crs.to_epsg() == 4326
        assert sites['site_id'].tolist() == sorted(sites['site_id'])

    def test_loads_excel(self, sites_df, tmp_path):
        path = tmp_path / 'sites.xlsx'
        sites_df.to_excel(path, index=False)
        sites = SiteLoader().load(path)
        assert len(sites) == 6

    def test_missing_deposit_type_becomes_unknown(self, sites):
        assert sites.set_index('site_id').loc['S6', 'deposit_type'] == 'unknown'

    def test_column_aliases(self, sites_df):
        renamed = sites_df.rename(columns={'id': 'site_id', 'longitude': 'lon', 'latitude': 'lat'})
        sites = SiteLoader().from_dataframe(renamed)
        assert len(sites) == 6

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SiteLoader().load(tmp_path / 'nope.csv')

    def test_missing_column_fails(self, sites_df):
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df.drop(columns=['tonnage']))

    def test_duplicate_ids_fail(self, sites_df):
        sites_df.loc[1, 'id'] = 'S1'
        loader = SiteLoader()
        with pytest.raises(ValueError):
            loader.from_dataframe(sites_df)
        assert any('Duplicate' in e for e in loader.validation_result.errors)

    def test_ids_differing_only_by_whitespace_fail(self, sites_df):
        """' S1' is stored as 'S1', so it duplicates the first site."""
        sites_df.loc[1, 'id'] = ' S1'
        loader = SiteLoader()
        with pytest.raises(ValueError):
            loader.from_dataframe(sites_df)
        assert any('Duplicate' in e for e in loader.validation_result.errors)

    def test_blank_id_fails(self, sites_df):
        sites_df.loc[2, 'id'] = '   '
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df)

    def test_policy_counts(self, sites_df):
        loader = SiteLoader()
        loader.from_dataframe(sites_df)
        result = loader.validation_result
        assert result.metadata['policy_counts'] == {
            'magmatic_sulphide': 2, 'laterite': 2, 'unknown': 2,
        }
        assert result.n_fallback_sites == 2

    def test_null_coordinates_fail(self, sites_df):
        sites_df.loc[0, 'latitude'] = np.nan
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df)

    def test_out_of_range_longitude_fails(self, sites_df):
        sites_df.loc[0, 'longitude'] = 200.0
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df)

    def test_non_numeric_tonnage_fails(self, sites_df):
        sites_df['tonnage'] = sites_df['tonnage'].astype(object)
        sites_df.loc[0, 'tonnage'] = 'lots'
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df)

    def test_zero_tonnage_is_a_warning(self, sites_df):
        sites_df.loc[0, 'tonnage'] = 0.0
        loader = SiteLoader()
        sites = loader.from_dataframe(sites_df)
        assert len(sites) == 6
        assert loader.validation_result.warnings

    def test_empty_table_fails(self, sites_df):
        with pytest.raises(ValueError):
            SiteLoader().from_dataframe(sites_df.iloc[0:0])


class TestClassificationLayer:
    """Raster metadata and class-value masking."""

    def test_metadata(self, halves_layer):
        assert halves_layer.crs.to_epsg() == 6933
        assert halves_layer.resolution == (100.0, 100.0)
        assert halves_layer.bounds == (0.0, 0.0, 10_000.0, 10_000.0)
        assert halves_layer.nodata == 255

    def test_is_class_value(self, halves_layer):
        values = np.array([0, 1, 2, 255])
        assert halves_layer.is_class_value(values).tolist() == [False, True, True, False]

    def test_missing_raster(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ClassificationLayer(tmp_path / 'missing.tif')

    def test_raster_without_crs(self, raster_writer, tmp_path):
        path = raster_writer(tmp_path / 'nocrs.tif', np.ones((4, 4)), from_origin(0, 4, 1, 1), crs=None)
        with pytest.raises(ValueError, match="no CRS"):
            ClassificationLayer(path)


class TestDrawPersistence:
    """GeoPackage round trip of one draw and directory listing."""

    def test_save_and_load(self, buffer_factory, tmp_path):
        buffers = buffer_factory([('S1', 1000.0, 1000.0, 500.0), ('S2', 3000.0, 3000.0, 200.0)], draw=7)
        path = save_draw(buffers, tmp_path, 7)
        assert path.name == 'draw_0007.gpkg'

        loaded = load_draw(path)
        assert loaded['site_id'].tolist() == ['S1', 'S2']
        assert (loaded['draw'] == 7).all()
        assert loaded.crs.to_epsg() == 6933
        np.testing.assert_allclose(loaded.area, buffers.area)

    def test_draw_index_from_path(self, tmp_path):
        assert draw_index_from_path(draw_file_path(tmp_path, 12)) == 12
        with pytest.raises(ValueError):
            draw_index_from_path(tmp_path / 'buffers.gpkg')

    def test_list_draw_files_sorted(self, buffer_factory, tmp_path):
        for draw in (10, 2, 1):
            save_draw(buffer_factory([('S1', 0.0, 0.0, 100.0)], draw=draw), tmp_path, draw)
        paths = list_draw_files(tmp_path)
        assert [draw_index_from_path(p) for p in paths] == [1, 2, 10]

    def test_list_draw_files_empty_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list_draw_files(tmp_path)

    def test_list_draw_files_missing_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            list_draw_files(tmp_path / 'draws')
