"""Tests for spatepi.geostat — variogram fitting, kriging, cross-validation."""

import numpy as np
import pytest

from spatepi.datasets import coordinates, make_exposure_survey
from spatepi.geostat import (
    cross_validate,
    empirical_variogram,
    fit_variogram,
    ordinary_kriging,
    prediction_grid,
)
from spatepi.pointpattern import Window


@pytest.fixture(scope="module")
def survey():
    gdf = make_exposure_survey(n_sites=80, extent=5000.0, range_=2000.0,
                               nugget=0.05, rng=np.random.default_rng(11))
    return coordinates(gdf), gdf['exposure'].to_numpy()


@pytest.fixture(scope="module")
def fit(survey):
    coords, values = survey
    return empirical_variogram(coords, values, model="exponential", n_lags=10)


# ═══════════════════════════════════════════════════════════════════════
# VARIOGRAM
# ═══════════════════════════════════════════════════════════════════════

class TestVariogram:
    def test_shapes(self, fit):
        assert fit.bins.shape == (10,)
        assert fit.experimental.shape == (10,)
        assert fit.counts.shape == (10,)
        assert fit.lag_centers.shape == (10,)
        assert fit.n_sites == 80

    def test_bins_increasing(self, fit):
        assert np.all(np.diff(fit.bins) > 0)
        assert np.all(fit.lag_centers < fit.bins)

    def test_parameters_non_negative(self, fit):
        assert fit.effective_range > 0
        assert fit.sill >= 0
        assert fit.nugget >= 0
        assert np.isfinite(fit.rmse)

    def test_model_curve_starts_at_nugget(self, fit):
        assert fit.model_curve(np.array([0.0]))[0] == pytest.approx(fit.nugget, abs=1e-6)

    def test_model_curve_non_decreasing(self, fit):
        h = np.linspace(0.0, fit.bins[-1], 50)
        assert np.all(np.diff(fit.model_curve(h)) >= -1e-9)

    def test_to_dict(self, fit):
        d = fit.to_dict()
        assert d['model'] == "exponential"
        assert d['n_lags'] == 10

    def test_fit_variogram_logs(self, survey, caplog):
        coords, values = survey
        with caplog.at_level("INFO", logger="spatepi.geostat"):
            fit_variogram(coords, values, n_lags=8)
        assert "variogram (spherical, matheron)" in caplog.text

    @pytest.mark.parametrize("kwargs, match", [
        ({'model': 'linearish'}, 'model'),
        ({'estimator': 'median'}, 'estimator'),
        ({'n_lags': 1}, 'n_lags'),
    ])
    def test_bad_options(self, survey, kwargs, match):
        coords, values = survey
        with pytest.raises(ValueError, match=match):
            empirical_variogram(coords, values, **kwargs)

    def test_too_few_sites(self):
        with pytest.raises(ValueError, match="at least 3"):
            empirical_variogram(np.zeros((2, 2)), np.array([1.0, 2.0]))

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="differ"):
            empirical_variogram(np.random.rand(5, 2), np.ones(4))

    def test_constant_values(self):
        with pytest.raises(ValueError, match="constant"):
            empirical_variogram(np.random.rand(10, 2), np.ones(10))


# ═══════════════════════════════════════════════════════════════════════
# KRIGING
# ═══════════════════════════════════════════════════════════════════════

class TestKriging:
    def test_prediction_grid(self):
        gx, gy, mask = prediction_grid((0.0, 0.0, 100.0, 50.0), 10.0)
        assert gx.shape == (10,)
        assert gy.shape == (5,)
        assert gx[0] == pytest.approx(5.0)
        assert mask.shape == (5, 10) and mask.all()

    def test_prediction_grid_window_mask(self):
        window = Window.lshape(100.0, 100.0)
        _, _, mask = prediction_grid((0.0, 0.0, 100.0, 100.0), 10.0, window)
        # Top-right quarter is cut out
        assert not mask[-1, -1]
        assert mask[0, 0]
        assert mask.sum() == 75

    def test_prediction_grid_bad_args(self):
        with pytest.raises(ValueError, match="resolution"):
            prediction_grid((0, 0, 1, 1), 0.0)
        with pytest.raises(ValueError, match="degenerate"):
            prediction_grid((0, 0, 0, 1), 0.1)

    def test_surface_shape_and_range(self, fit, survey):
        _, values = survey
        gx, gy, mask = prediction_grid((0.0, 0.0, 5000.0, 5000.0), 500.0)
        res = ordinary_kriging(fit, gx, gy, min_points=3, max_points=15, mask=mask)
        assert res.shape == (10, 10)
        finite = np.isfinite(res.prediction)
        assert finite.sum() == 100 - res.n_missing
        # Kriging is a weighted average: predictions stay near the data range
        spread = values.max() - values.min()
        assert res.prediction[finite].min() > values.min() - 0.5 * spread
        assert res.prediction[finite].max() < values.max() + 0.5 * spread
        assert np.all(res.variance[finite] >= -1e-9)

    def test_masked_cells_stay_nan(self, fit):
        gx, gy, mask = prediction_grid((0.0, 0.0, 5000.0, 5000.0), 1000.0,
                                       Window.lshape(5000.0, 5000.0))
        res = ordinary_kriging(fit, gx, gy, min_points=3, max_points=15, mask=mask)
        assert np.all(np.isnan(res.prediction[~mask]))

    def test_mask_shape_mismatch(self, fit):
        gx, gy, _ = prediction_grid((0.0, 0.0, 5000.0, 5000.0), 1000.0)
        with pytest.raises(ValueError, match="mask shape"):
            ordinary_kriging(fit, gx, gy, mask=np.ones((2, 2), bool))

    def test_bad_neighbourhood(self, fit):
        with pytest.raises(ValueError, match="min_points"):
            ordinary_kriging(fit, np.arange(3.0), np.arange(3.0),
                             min_points=10, max_points=5)


# ═══════════════════════════════════════════════════════════════════════
# CROSS-VALIDATION
# ═══════════════════════════════════════════════════════════════════════

class TestCrossValidation:
    def test_leave_one_out(self, fit, survey):
        _, values = survey
        cv = cross_validate(fit, min_points=3, max_points=15)
        assert cv.predicted.shape == values.shape
        np.testing.assert_array_equal(cv.observed, values)
        ok = np.isfinite(cv.residuals)
        assert ok.sum() == len(values) - cv.n_failed
        assert cv.rmse >= cv.mae >= 0
        # Spatially correlated field: LOO beats predicting the global mean
        assert cv.rmse < values.std() * 1.2

    def test_needs_more_sites_than_min_points(self, fit):
        with pytest.raises(ValueError, match="min_points"):
            cross_validate(fit, min_points=80, max_points=90)
