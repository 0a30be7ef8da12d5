import geopandas as gpd
import pytest
from shapely.geometry import box

from urbangrowth.data.region import load_region, region_area_km2


def write_regions(path):
    gdf = gpd.GeoDataFrame(
        {'country_na': ['United Arab Emirates', 'Oman']},
        geometry=[box(300000, 2700000, 310000, 2710000), box(400000, 2600000, 410000, 2610000)],
        crs='EPSG:32640'
    )
    gdf.to_file(path, driver='GeoJSON')
    return path


def test_load_region_by_name(tmp_path):
    path = write_regions(tmp_path / 'countries.geojson')
    region = load_region(str(path), 'EPSG:32640', 'United Arab Emirates')
    assert region.bounds == pytest.approx((300000, 2700000, 310000, 2710000))


def test_load_region_unknown_name(tmp_path):
    path = write_regions(tmp_path / 'countries.geojson')
    with pytest.raises(ValueError):
        load_region(str(path), 'EPSG:32640', 'Atlantis')


def test_region_area_km2():
    area = region_area_km2(box(300000, 2700000, 310000, 2710000), 'EPSG:32640')
    assert area == pytest.approx(100.0, rel=0.01)
