"""Tests for spatepi.datasets — synthetic data, loaders and CRS helpers."""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point

from spatepi.datasets import (
    coordinates,
    ensure_projected,
    exponential_covariance,
    load_areal_data,
    load_point_data,
    make_areal_disease_data,
    make_case_control,
    make_exposure_survey,
    make_lattice,
    make_window,
    point_source_intensity,
    sar_field,
    split_case_control,
)


# ═══════════════════════════════════════════════════════════════════════
# EXPOSURE SURVEY
# ═══════════════════════════════════════════════════════════════════════

class TestExposureSurvey:
    def test_columns_and_crs(self):
        gdf = make_exposure_survey(n_sites=40, rng=np.random.default_rng(0))
        assert list(gdf.columns) == ['site_id', 'exposure', 'geometry']
        assert len(gdf) == 40
        assert gdf.crs.to_string() == "EPSG:32630"

    def test_sites_inside_extent(self):
        gdf = make_exposure_survey(n_sites=60, extent=500.0,
                                   rng=np.random.default_rng(1))
        xy = coordinates(gdf)
        assert xy.min() >= 0.0
        assert xy.max() <= 500.0

    def test_reproducible(self):
        a = make_exposure_survey(n_sites=30, rng=np.random.default_rng(5))
        b = make_exposure_survey(n_sites=30, rng=np.random.default_rng(5))
        np.testing.assert_array_equal(a['exposure'], b['exposure'])

    def test_mean_roughly_recovered(self):
        gdf = make_exposure_survey(n_sites=200, mean=10.0, range_=100.0,
                                   rng=np.random.default_rng(2))
        # Short range → nearly independent draws with variance sill + nugget
        assert gdf['exposure'].mean() == pytest.approx(10.0, abs=0.3)

    def test_covariance_at_zero_and_range(self):
        c = exponential_covariance(np.array([0.0, 1000.0]), sill=2.0, range_=1000.0)
        assert c[0] == pytest.approx(2.0)
        assert c[1] == pytest.approx(2.0 * np.exp(-3.0))

    @pytest.mark.parametrize("kwargs", [
        {'n_sites': 2}, {'extent': 0.0}, {'sill': -1.0}, {'nugget': -0.5},
    ])
    def test_bad_arguments(self, kwargs):
        with pytest.raises(ValueError):
            make_exposure_survey(rng=np.random.default_rng(0), **kwargs)


# ═══════════════════════════════════════════════════════════════════════
# LATTICE DISEASE DATA
# ═══════════════════════════════════════════════════════════════════════

class TestArealData:
    def test_lattice_geometry(self):
        gdf = make_lattice(2, 3, cell_size=10.0)
        assert len(gdf) == 6
        assert gdf.geometry.area.tolist() == [100.0] * 6
        assert gdf['region_id'].tolist() == list(range(6))
        # Row-major, row 0 at the bottom
        assert gdf.loc[3, 'row'] == 1 and gdf.loc[3, 'col'] == 0

    def test_lattice_bad_size(self):
        with pytest.raises(ValueError):
            make_lattice(0, 3)

    def test_disease_columns(self):
        gdf = make_areal_disease_data(nrows=5, ncols=5, rng=np.random.default_rng(0))
        for col in ('population', 'deprivation', 'true_rr', 'expected', 'cases'):
            assert col in gdf.columns
        assert (gdf['cases'] >= 0).all()
        assert (gdf['population'] > 0).all()
        np.testing.assert_allclose(gdf['expected'], gdf['population'] * 0.002)

    def test_deprivation_standardised(self):
        gdf = make_areal_disease_data(nrows=6, ncols=6, rng=np.random.default_rng(3))
        assert gdf['deprivation'].mean() == pytest.approx(0.0, abs=1e-12)
        assert gdf['deprivation'].std(ddof=0) == pytest.approx(1.0)

    def test_true_rr_population_weighted_mean_is_one(self):
        gdf = make_areal_disease_data(nrows=6, ncols=6, rng=np.random.default_rng(4))
        mean_rr = np.average(gdf['true_rr'], weights=gdf['population'])
        assert mean_rr == pytest.approx(1.0)

    def test_bad_rho(self):
        with pytest.raises(ValueError, match="spatial_rho"):
            make_areal_disease_data(spatial_rho=1.0)

    def test_sar_field_solves_system(self):
        W = np.array([[0.0, 1.0], [1.0, 0.0]])
        rng = np.random.default_rng(0)
        u = sar_field(W, 0.5, rng)
        eps = np.random.default_rng(0).normal(0.0, 1.0, 2)
        np.testing.assert_allclose(u - 0.5 * W @ u, eps)


# ═══════════════════════════════════════════════════════════════════════
# CASE-CONTROL POINTS
# ═══════════════════════════════════════════════════════════════════════

class TestCaseControl:
    def test_controls_count_and_flag(self):
        window = make_window("rectangle", 1000.0, 1000.0)
        gdf = make_case_control(window, process="csr", n_controls=50,
                                rng=np.random.default_rng(0), intensity=1e-4)
        cases, controls = split_case_control(gdf)
        assert len(controls) == 50
        assert len(cases) == int(gdf['case'].sum())
        assert gdf['case'].dtype == bool

    def test_all_points_in_window(self):
        window = make_window("lshape", 1000.0, 1000.0)
        gdf = make_case_control(window, process="thomas", n_controls=30,
                                rng=np.random.default_rng(1),
                                kappa=2e-5, cluster_scale=50.0, mu=5.0)
        assert window.contains(coordinates(gdf)).all()

    def test_point_source_peaks_at_source(self):
        window = make_window("rectangle", 100.0, 100.0)
        fn = point_source_intensity(window, peak=5.0, spread=10.0, background=0.2)
        src = window.geometry.representative_point()
        assert fn(src.x, src.y) == pytest.approx(5.0)
        assert fn(src.x + 1000.0, src.y) == pytest.approx(1.0)

    def test_bad_process(self):
        window = make_window()
        with pytest.raises(ValueError, match="process"):
            make_case_control(window, process="strauss", rng=np.random.default_rng(0))

    def test_bad_window_kind(self):
        with pytest.raises(ValueError, match="window kind"):
            make_window("circle")

    def test_split_missing_column(self):
        gdf = gpd.GeoDataFrame({'x': [1]}, geometry=[Point(0, 0)])
        with pytest.raises(ValueError, match="column"):
            split_case_control(gdf)


# ═══════════════════════════════════════════════════════════════════════
# LOADERS & CRS
# ═══════════════════════════════════════════════════════════════════════

class TestLoadersAndCrs:
    def test_load_point_csv(self, tmp_path):
        path = tmp_path / "pts.csv"
        pd.DataFrame({'x': [1.0, 2.0], 'y': [3.0, 4.0], 'case': [1, 0]}).to_csv(path, index=False)
        gdf = load_point_data(path, crs="EPSG:32630")
        assert len(gdf) == 2
        assert gdf.geometry.iloc[1].x == 2.0
        assert 'case' in gdf.columns

    def test_load_point_missing_column(self, tmp_path):
        path = tmp_path / "pts.csv"
        pd.DataFrame({'lon': [1.0], 'lat': [2.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="coordinate column"):
            load_point_data(path)

    def test_load_missing_files(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_point_data(tmp_path / "none.csv")
        with pytest.raises(FileNotFoundError):
            load_areal_data(tmp_path / "none.gpkg")

    def test_load_areal_round_trip(self, tmp_path):
        path = tmp_path / "lattice.geojson"
        make_lattice(2, 2).to_file(path, driver="GeoJSON")
        gdf = load_areal_data(path)
        assert len(gdf) == 4

    def test_ensure_projected_requires_crs(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(0, 0)])
        with pytest.raises(ValueError, match="no CRS"):
            ensure_projected(gdf)

    def test_geographic_goes_to_utm(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(-3.7, 40.4), Point(-3.6, 40.5)],
                               crs="EPSG:4326")
        out = ensure_projected(gdf)
        assert out.crs.is_projected
        assert "UTM" in out.crs.name

    def test_projected_unchanged(self):
        gdf = make_lattice(2, 2)
        assert ensure_projected(gdf) is gdf

    def test_explicit_target(self):
        gdf = gpd.GeoDataFrame(geometry=[Point(-3.7, 40.4)], crs="EPSG:4326")
        out = ensure_projected(gdf, crs="EPSG:25830")
        assert out.crs.to_epsg() == 25830

    def test_geographic_target_rejected(self):
        gdf = make_lattice(2, 2)
        with pytest.raises(ValueError, match="geographic"):
            ensure_projected(gdf, crs="EPSG:4326")

    def test_coordinates_of_polygons_are_centroids(self):
        xy = coordinates(make_lattice(1, 2, cell_size=2.0))
        np.testing.assert_allclose(xy, [[1.0, 1.0], [3.0, 1.0]])
