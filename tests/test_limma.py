"""Tests for gald_ipms.limma module."""

import numpy as np
import pandas as pd
import pytest
from scipy.special import polygamma
from scipy.stats import ttest_ind

from gald_ipms import limma
from gald_ipms.limma import (
    adjust_pvalues,
    contrasts_fit,
    ebayes,
    fit_f_dist,
    lm_fit,
    make_contrasts,
    make_design,
    squeeze_var,
    top_table,
    trigamma_inverse,
)


@pytest.fixture
def two_group():
    rng = np.random.default_rng(1)
    y = rng.normal(20, 1, size=(300, 6))
    y[:10, :3] += 5.0
    design = make_design(['A', 'A', 'A', 'B', 'B', 'B'])
    contrasts = make_contrasts([('A', 'B')], design.columns)
    return y, design, contrasts


class TestDesign:
    def test_cell_means_design(self):
        design = make_design(['GALD', 'Healthy', 'GALD'], levels=['Healthy', 'GALD'])

        assert list(design.columns) == ['Healthy', 'GALD']
        np.testing.assert_array_equal(design.to_numpy(), [[0, 1], [1, 0], [0, 1]])

    def test_unknown_level_raises(self):
        with pytest.raises(ValueError):
            make_design(['GALD', 'PBC'], levels=['GALD'])

    def test_contrast_matrix(self):
        contrasts = make_contrasts([('GALD', 'Healthy'), ('PBC', 'Healthy')], ['Healthy', 'GALD', 'PBC'])

        assert list(contrasts.columns) == ['GALD_vs_Healthy', 'PBC_vs_Healthy']
        assert contrasts.loc['GALD', 'GALD_vs_Healthy'] == 1
        assert contrasts.loc['Healthy', 'GALD_vs_Healthy'] == -1
        assert contrasts.loc['PBC', 'GALD_vs_Healthy'] == 0

    def test_contrast_with_unknown_condition_raises(self):
        with pytest.raises(ValueError):
            make_contrasts([('GALD', 'PBC')], ['Healthy', 'GALD'])


class TestLmFit:
    def test_coefficients_are_group_means(self, two_group):
        y, design, _ = two_group
        fit = lm_fit(y, design)

        np.testing.assert_allclose(fit['coefficients'][:, 0], y[:, :3].mean(axis=1))
        np.testing.assert_allclose(fit['coefficients'][:, 1], y[:, 3:].mean(axis=1))
        np.testing.assert_allclose(fit['stdev_unscaled'], np.sqrt(1 / 3))
        np.testing.assert_array_equal(fit['df_residual'], 4)
        np.testing.assert_allclose(fit['Amean'], y.mean(axis=1))

    def test_missing_values_use_observed_samples(self):
        y = np.array([
            [1.0, 2.0, np.nan, 5.0, 6.0, 7.0],
            [np.nan, np.nan, np.nan, 5.0, 6.0, 8.0],
        ])
        design = make_design(['A', 'A', 'A', 'B', 'B', 'B'])

        fit = lm_fit(y, design)

        assert fit['coefficients'][0, 0] == pytest.approx(1.5)
        assert fit['stdev_unscaled'][0, 0] == pytest.approx(np.sqrt(1 / 2))
        assert fit['df_residual'][0] == 3
        assert np.isnan(fit['coefficients'][1, 0])
        assert fit['coefficients'][1, 1] == pytest.approx(19 / 3)
        assert fit['df_residual'][1] == 2

    def test_sample_count_mismatch_raises(self):
        with pytest.raises(ValueError):
            lm_fit(np.zeros((3, 4)), make_design(['A', 'B', 'B']))


class TestContrastsFit:
    def test_ordinary_t_matches_pooled_t_test(self, two_group):
        y, design, contrasts = two_group
        fit = contrasts_fit(lm_fit(y, design), contrasts)

        t_ordinary = fit['coefficients'][:, 0] / (fit['stdev_unscaled'][:, 0] * fit['sigma'])
        expected, _ = ttest_ind(y[:, :3], y[:, 3:], axis=1)

        np.testing.assert_allclose(t_ordinary, expected)
        np.testing.assert_allclose(fit['stdev_unscaled'][:, 0], np.sqrt(2 / 3))

    def test_unestimable_contrast_is_nan(self):
        y = np.array([[np.nan, np.nan, 5.0, 6.0, 7.0, 8.0]])
        design = make_design(['A', 'A', 'B', 'B', 'C', 'C'])
        contrasts = make_contrasts([('A', 'B'), ('C', 'B')], design.columns)

        fit = contrasts_fit(lm_fit(y, design), contrasts)

        assert np.isnan(fit['coefficients'][0, 0])
        assert fit['coefficients'][0, 1] == pytest.approx(2.0)


class TestFitFDist:
    def test_recovers_prior(self):
        rng = np.random.default_rng(7)
        s2 = 0.5 * rng.f(4, 8, size=20000)

        d0, s0_2 = fit_f_dist(s2, 4)

        assert s0_2 == pytest.approx(0.5, rel=0.1)
        assert 5 < d0 < 13

    def test_no_excess_dispersion_gives_infinite_df(self):
        rng = np.random.default_rng(3)
        s2 = 0.2 * rng.chisquare(4, size=20000) / 4

        d0, s0_2 = fit_f_dist(s2, 4)

        assert d0 > 50
        assert s0_2 == pytest.approx(0.2, rel=0.05)

    def test_single_variance(self):
        assert fit_f_dist([0.3], 2) == (0.0, 0.3)

    def test_trigamma_inverse(self):
        x = np.array([0.05, 0.5, 2.0, 20.0])
        np.testing.assert_allclose(polygamma(1, trigamma_inverse(x)), x, rtol=1e-6)


class TestSqueezeVar:
    def test_posterior_between_sample_and_prior(self):
        s2 = np.array([0.1, 1.0, 4.0])
        post = squeeze_var(s2, 4, d0=6, s0_2=1.0)

        assert post[0] > 0.1 and post[0] < 1.0
        assert post[1] == pytest.approx(1.0)
        assert post[2] < 4.0 and post[2] > 1.0

    def test_infinite_prior_df_returns_prior(self):
        post = squeeze_var(np.array([0.1, 4.0]), 4, d0=np.inf, s0_2=0.7)
        np.testing.assert_allclose(post, 0.7)

    def test_zero_df_takes_prior(self):
        post = squeeze_var(np.array([np.nan, 1.0]), np.array([0, 4]), d0=4, s0_2=2.0)
        assert post[0] == pytest.approx(2.0)


class TestEbayes:
    def test_moderated_statistics(self, two_group):
        y, design, contrasts = two_group
        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))

        expected_t = fit['coefficients'] / fit['stdev_unscaled'] / np.sqrt(fit['s2_post'])[:, None]
        np.testing.assert_allclose(fit['t'], expected_t)

        assert np.all(fit['df_total'] <= np.sum(fit['df_residual']))
        assert np.all(fit['df_total'] >= fit['df_residual'])
        assert np.all((fit['p_value'] >= 0) & (fit['p_value'] <= 1))

    def test_detects_shifted_proteins(self, two_group):
        y, design, contrasts = two_group
        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))

        table = top_table(fit, 'A_vs_B')
        assert (table['pvalue'].iloc[:10] < 0.01).all()
        assert table['log2FC'].iloc[:10].mean() == pytest.approx(5.0, abs=0.6)
        assert list(table.columns) == ['log2FC', 'AveExpr', 't', 'pvalue', 'adj_pvalue', 'df']
        assert (table['adj_pvalue'].iloc[:10] < 0.05).all()
        assert (table['adj_pvalue'] >= table['pvalue']).all()

    def test_adjustment_method(self, two_group):
        y, design, contrasts = two_group
        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))

        unadjusted = top_table(fit, 0, adjust='none')
        bonferroni = top_table(fit, 0, adjust='bonferroni')

        np.testing.assert_array_equal(unadjusted['adj_pvalue'], unadjusted['pvalue'])
        np.testing.assert_allclose(bonferroni['adj_pvalue'], np.minimum(bonferroni['pvalue'] * 300, 1))

    def test_protein_without_residual_df_is_untested(self, two_group):
        y, design, contrasts = two_group
        y = y.copy()
        y[0] = [20.0, np.nan, np.nan, 25.0, np.nan, np.nan]

        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))
        table = top_table(fit, 0)

        assert fit['df_residual'][0] == 0
        assert table['log2FC'].iloc[0] == pytest.approx(-5.0)
        assert np.isnan(table['t'].iloc[0])
        assert np.isnan(table['pvalue'].iloc[0])
        assert np.isnan(table['adj_pvalue'].iloc[0])
        assert table['pvalue'].iloc[1:].notna().all()

    def test_infinite_prior_df_gives_pooled_variance_t(self, two_group, monkeypatch):
        y, design, contrasts = two_group
        monkeypatch.setattr(limma, 'fit_f_dist', lambda s2, df: (np.inf, 0.8))

        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))

        expected = fit['coefficients'] / (fit['stdev_unscaled'] * np.sqrt(0.8))
        np.testing.assert_allclose(fit['t'], expected)
        np.testing.assert_allclose(fit['df_total'], np.sum(fit['df_residual']))
        assert fit['df_prior'] == np.inf

    def test_requires_residual_df(self):
        y = np.array([[1.0, 2.0]])
        fit = lm_fit(y, make_design(['A', 'B']))

        with pytest.raises(ValueError):
            ebayes(fit)

    def test_unknown_coefficient_raises(self, two_group):
        y, design, contrasts = two_group
        fit = ebayes(contrasts_fit(lm_fit(y, design), contrasts))

        with pytest.raises(KeyError):
            top_table(fit, 'B_vs_A')


class TestAdjustPvalues:
    def test_nan_values_are_skipped(self):
        adjusted = adjust_pvalues([0.01, np.nan, 0.04])

        assert np.isnan(adjusted[1])
        np.testing.assert_allclose(adjusted[[0, 2]], [0.02, 0.04])
