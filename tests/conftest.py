"""
Pytest configuration and shared fixtures for the mining footprint overlap tests.

This conftest.py adds the project root to sys.path so that imports of
`mining_overlap.*` work from within the tests/ directory, and builds small
synthetic inputs (site tables and classified GeoTIFFs) in tmp_path.
"""

import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin
from shapely.geometry import Point

# Add project root to sys.path so `from mining_overlap.xxx import ...` works
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mining_overlap.data_ingestion import ClassificationLayer, SiteLoader

EQUAL_AREA_CRS = "EPSG:6933"
NODATA = 255


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: end-to-end runs (deselect with -m 'not slow')")


def write_raster(path, data, transform, crs=EQUAL_AREA_CRS, nodata=NODATA):
    """Write a single-band uint8 GeoTIFF."""
    with rasterio.open(
        path, 'w', driver='GTiff',
        height=data.shape[0], width=data.shape[1], count=1,
        dtype='uint8', crs=crs, transform=transform, nodata=nodata,
    ) as dst:
        dst.write(data.astype('uint8'), 1)
    return path


@pytest.fixture
def root_dir():
    """Return the project root directory as a Path object."""
    return ROOT


@pytest.fixture
def sites_df():
    """Six sites near (0°, 0°) covering both policies, an unknown type and a blank type."""
    return pd.DataFrame({
        'id': ['S1', 'S2', 'S3', 'S4', 'S5', 'S6'],
        'longitude': [-0.20, -0.05, 0.05, 0.20, 0.10, -0.15],
        'latitude': [0.00, 0.10, -0.10, 0.05, 0.15, -0.15],
        'tonnage': [2.0e5, 5.0e4, 1.0e6, 3.0e5, 1.0e3, 8.0e4],
        'deposit_type': ['Magmatic Sulphide', 'Laterite', 'laterite',
                         'magmatic sulfide', 'Hydrothermal', None],
    })


@pytest.fixture
def sites(sites_df):
    """Validated site GeoDataFrame (EPSG:4326)."""
    return SiteLoader().from_dataframe(sites_df)


@pytest.fixture
def sites_csv(sites_df, tmp_path):
    path = tmp_path / 'sites.csv'
    sites_df.to_csv(path, index=False)
    return path


@pytest.fixture
def regional_raster(tmp_path):
    """
    100 km x 100 km classified raster centred on the origin of EPSG:6933.

    500 m cells; class 1 west of x=0, class 2 east of it, unclassified (0)
    north of y=40 km and no-data along the southern edge.
    """
    res = 500.0
    n = 200
    data = np.ones((n, n), dtype='uint8')
    data[:, n // 2:] = 2
    data[:20, :] = 0          # rows nearest the top edge: y > 40 km
    data[-2:, :] = NODATA
    transform = from_origin(-50_000.0, 50_000.0, res, res)
    return write_raster(tmp_path / 'regional.tif', data, transform)


@pytest.fixture
def regional_layer(regional_raster):
    return ClassificationLayer(regional_raster)


@pytest.fixture
def halves_raster(tmp_path):
    """
    10 km x 10 km raster at 100 m with origin (0, 0) in EPSG:6933.

    Class 1 for x < 5 km, class 2 for x >= 5 km, unclassified (0) for
    y >= 9 km.
    """
    res = 100.0
    n = 100
    data = np.ones((n, n), dtype='uint8')
    data[:, n // 2:] = 2
    data[:10, :] = 0
    transform = from_origin(0.0, 10_000.0, res, res)
    return write_raster(tmp_path / 'halves.tif', data, transform)


@pytest.fixture
def halves_layer(halves_raster):
    return ClassificationLayer(halves_raster)


def make_buffers(circles, draw=1, crs=EQUAL_AREA_CRS, resolution=16):
    """Buffers from (site_id, x, y, radius_m) tuples."""
    return gpd.GeoDataFrame(
        {
            'draw': [draw] * len(circles),
            'site_id': [c[0] for c in circles],
        },
        geometry=[Point(x, y).buffer(r, quad_segs=resolution) for _, x, y, r in circles],
        crs=crs,
    )


@pytest.fixture
def buffer_factory():
    return make_buffers


@pytest.fixture
def raster_writer():
    return write_raster
