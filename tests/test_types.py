"""Tests for spatepi.types — enums, option names and result serialisation."""

import json

import numpy as np

from spatepi.types import (
    K_CORRECTIONS,
    VARIOGRAM_MODELS,
    WEIGHT_KINDS,
    DensitySurface,
    Envelope,
    LagrangeMultiplierTest,
    LisaQuadrant,
    LocalMoranResult,
    MoranResult,
    RegressionResult,
)


class TestLisaQuadrant:
    def test_pysal_numbering(self):
        assert LisaQuadrant.NS == 0
        assert LisaQuadrant.HH == 1
        assert LisaQuadrant.LH == 2
        assert LisaQuadrant.LL == 3
        assert LisaQuadrant.HL == 4

    def test_option_names(self):
        assert 'spherical' in VARIOGRAM_MODELS
        assert K_CORRECTIONS == ('none', 'border', 'translation')
        assert set(WEIGHT_KINDS) == {'queen', 'rook', 'knn', 'distance'}


class TestToDict:
    def test_moran_to_dict_is_json_ready(self):
        res = MoranResult(I=0.3, expected=-0.01, var_norm=0.002, z_norm=6.9,
                          p_norm=1e-9, var_rand=0.002, z_rand=6.8, p_rand=1e-9,
                          n=100, permutations=99, sim=np.zeros(99),
                          p_sim=np.float64(0.01), z_sim=5.0)
        out = json.loads(json.dumps(res.to_dict()))
        assert out['I'] == 0.3
        assert out['p_sim'] == 0.01
        assert 'sim' not in out

    def test_local_moran_counts(self):
        clusters = np.array([1, 1, 3, 0, 0, 4])
        res = LocalMoranResult(Is=np.zeros(6), quadrant=np.array([1, 1, 3, 2, 2, 4]),
                               p_sim=np.full(6, 0.01), significant=clusters > 0,
                               clusters=clusters, alpha=0.05, threshold=0.05,
                               permutations=99)
        counts = res.counts()
        assert counts == {'NS': 2, 'HH': 2, 'LH': 0, 'LL': 1, 'HL': 1}
        assert res.to_dict()['n_significant'] == 4

    def test_regression_to_dict(self):
        res = RegressionResult(
            model='lag', names=['CONSTANT', 'x'], betas=np.array([1.0, 2.0]),
            std_err=np.array([0.1, 0.2]), z_stat=np.array([10.0, 10.0]),
            p_values=np.array([0.0, 0.0]), sigma2=1.0, log_likelihood=-10.0,
            aic=26.0, r2=0.5, n=50, spatial_param=0.4, spatial_param_se=0.1,
            lm_tests=[LagrangeMultiplierTest('lm_error', 3.0, 1, 0.08)],
        )
        out = json.loads(json.dumps(res.to_dict()))
        assert out['coefficients']['x']['estimate'] == 2.0
        assert out['spatial_param'] == 0.4
        assert out['lm_tests']['lm_error']['df'] == 1

    def test_density_summary_ignores_nan(self):
        values = np.array([[1.0, np.nan], [3.0, 2.0]])
        surf = DensitySurface(grid_x=np.arange(2.0), grid_y=np.arange(2.0),
                              values=values, sigma=1.0)
        d = surf.to_dict()
        assert d['values']['min'] == 1.0
        assert d['values']['max'] == 3.0
        assert d['grid_shape'] == [2, 2]

    def test_envelope_above_below(self):
        env = Envelope(name='L', radii=np.arange(4.0),
                       observed=np.array([0.0, 2.0, 1.0, -1.0]),
                       lower=np.zeros(4), upper=np.ones(4), mean=np.full(4, 0.5),
                       n_simulations=19)
        np.testing.assert_array_equal(env.above, [False, True, False, False])
        np.testing.assert_array_equal(env.below, [False, False, False, True])
        assert env.to_dict()['n_radii_above'] == 1
