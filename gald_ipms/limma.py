"""
Linear models with empirical Bayes variance moderation.

A numpy/scipy implementation of the limma workflow for a proteins x
samples matrix of log intensities:

    fit = lm_fit(y, design)
    fit = contrasts_fit(fit, contrasts)
    fit = ebayes(fit)
    table = top_table(fit, 0)

Proteins are fitted on their observed samples only, so missing values
do not need imputing. Sample variances are shrunk towards a common
prior estimated from all proteins (Smyth 2004, Statistical Applications
in Genetics and Molecular Biology 3:3), giving moderated t-statistics
with extra degrees of freedom.
"""

import numpy as np
import pandas as pd
from scipy import stats
from scipy.special import digamma, polygamma
from statsmodels.stats.multitest import multipletests


def make_design(conditions, levels=None):
    """
    Cell-means design matrix (one indicator column per condition).

    Parameters
    ----------
    conditions : sequence of str
        Condition of each sample, in column order of the data matrix.
    levels : sequence of str, optional
        Condition order for the design columns (default: order of
        first appearance).

    Returns
    -------
    pd.DataFrame
        Samples x levels matrix of 0/1 indicators.
    """
    conditions = list(conditions)
    if levels is None:
        levels = list(dict.fromkeys(conditions))

    unknown = sorted(set(conditions) - set(levels))
    if unknown:
        raise ValueError(f"Conditions not in design levels: {unknown}")

    design = pd.DataFrame(0.0, index=range(len(conditions)), columns=list(levels))
    for i, cond in enumerate(conditions):
        design.loc[i, cond] = 1.0
    return design


def make_contrasts(comparisons, levels):
    """
    Contrast matrix for a list of (numerator, denominator) comparisons.

    Returns a levels x comparisons DataFrame whose columns are named
    '{numerator}_vs_{denominator}'.
    """
    levels = list(levels)
    contrasts = pd.DataFrame(0.0, index=levels, columns=[f"{a}_vs_{b}" for a, b in comparisons])

    for (numerator, denominator), name in zip(comparisons, contrasts.columns):
        for cond in (numerator, denominator):
            if cond not in levels:
                raise ValueError(f"Contrast {name} uses unknown condition '{cond}'")
        if numerator == denominator:
            raise ValueError(f"Contrast {name} compares a condition with itself")
        contrasts.loc[numerator, name] = 1.0
        contrasts.loc[denominator, name] = -1.0

    return contrasts


def lm_fit(y, design):
    """
    Fit a linear model to each row of ``y``.

    Rows are grouped by their pattern of missing values and each group is
    fitted by least squares on its observed samples. Coefficients that
    cannot be estimated from the observed samples are NaN.

    Parameters
    ----------
    y : array-like
        Proteins x samples matrix of log intensities (NaN = missing).
    design : array-like
        Samples x coefficients design matrix.

    Returns
    -------
    dict
        'coefficients', 'stdev_unscaled' (proteins x coefficients),
        'sigma', 'df_residual', 'Amean' (per protein), 'cov_coefficients'
        (unscaled covariance of the full design), 'coef_names'.
    """
    coef_names = list(design.columns) if isinstance(design, pd.DataFrame) else None
    y = np.asarray(y, dtype=float)
    X = np.asarray(design, dtype=float)

    if y.ndim != 2:
        raise ValueError("y must be a 2-dimensional proteins x samples matrix")
    if X.shape[0] != y.shape[1]:
        raise ValueError(
            f"Design has {X.shape[0]} rows but data has {y.shape[1]} samples"
        )

    n_genes, n_coef = y.shape[0], X.shape[1]
    coefficients = np.full((n_genes, n_coef), np.nan)
    stdev_unscaled = np.full((n_genes, n_coef), np.nan)
    sigma = np.full(n_genes, np.nan)
    df_residual = np.zeros(n_genes)

    observed = ~np.isnan(y)
    patterns, inverse = np.unique(observed, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)

    for k, mask in enumerate(patterns):
        rows = np.where(inverse == k)[0]
        if not mask.any():
            continue

        Xm = X[mask]
        estimable = np.any(Xm != 0, axis=0)
        Xe = Xm[:, estimable]
        rank = np.linalg.matrix_rank(Xe)
        xtx_inv = np.linalg.pinv(Xe.T @ Xe)

        Y = y[np.ix_(rows, np.where(mask)[0])]
        beta = Y @ Xe @ xtx_inv
        residuals = Y - beta @ Xe.T
        df = mask.sum() - rank

        coefficients[np.ix_(rows, np.where(estimable)[0])] = beta
        stdev_unscaled[np.ix_(rows, np.where(estimable)[0])] = np.sqrt(np.diag(xtx_inv))
        df_residual[rows] = df
        if df > 0:
            sigma[rows] = np.sqrt(np.sum(residuals ** 2, axis=1) / df)

    n_obs = observed.sum(axis=1)
    amean = np.where(n_obs > 0, np.nansum(y, axis=1) / np.maximum(n_obs, 1), np.nan)

    return {
        'coefficients': coefficients,
        'stdev_unscaled': stdev_unscaled,
        'sigma': sigma,
        'df_residual': df_residual,
        'Amean': amean,
        'cov_coefficients': np.linalg.pinv(X.T @ X),
        'coef_names': coef_names,
    }


def contrasts_fit(fit, contrasts):
    """
    Re-express a fitted model in terms of contrasts of its coefficients.

    The design must have uncorrelated coefficients (as a cell-means
    design does), so contrast standard errors combine per protein.

    Parameters
    ----------
    fit : dict
        Output from lm_fit().
    contrasts : array-like
        Coefficients x contrasts matrix.

    Returns
    -------
    dict
        Copy of ``fit`` with contrast coefficients and standard errors.
    """
    contrast_names = list(contrasts.columns) if isinstance(contrasts, pd.DataFrame) else None
    C = np.asarray(contrasts, dtype=float)

    cov = fit['cov_coefficients']
    off_diagonal = cov - np.diag(np.diag(cov))
    if not np.allclose(off_diagonal, 0):
        raise ValueError("contrasts_fit requires a design with uncorrelated coefficients")

    coef = fit['coefficients']
    stdev = fit['stdev_unscaled']
    if C.shape[0] != coef.shape[1]:
        raise ValueError(
            f"Contrast matrix has {C.shape[0]} rows but the fit has {coef.shape[1]} coefficients"
        )

    used = (C != 0).astype(float)
    unavailable = (np.isnan(coef).astype(float) @ used) > 0

    new_coef = np.nan_to_num(coef) @ C
    new_stdev = np.sqrt(np.nan_to_num(stdev) ** 2 @ C ** 2)
    new_coef[unavailable] = np.nan
    new_stdev[unavailable] = np.nan

    result = dict(fit)
    result['coefficients'] = new_coef
    result['stdev_unscaled'] = new_stdev
    result['contrasts'] = C
    result['coef_names'] = contrast_names
    return result


def trigamma_inverse(x):
    """Solve trigamma(y) = x for y by Newton iteration."""
    x = np.atleast_1d(np.asarray(x, dtype=float))
    y = np.full_like(x, np.nan)

    large = x > 1e7
    small = x < 1e-6
    mid = ~large & ~small & np.isfinite(x)
    y[large] = 1 / np.sqrt(x[large])
    y[small] = 1 / x[small]

    if mid.any():
        xm = x[mid]
        ym = 0.5 + 1 / xm
        for _ in range(50):
            tri = polygamma(1, ym)
            dif = tri * (1 - tri / xm) / polygamma(2, ym)
            ym = ym + dif
            if np.max(-dif / ym) < 1e-8:
                break
        y[mid] = ym

    return y


def fit_f_dist(s2, df):
    """
    Estimate the scaled F-distribution prior of the sample variances.

    Moment estimation on the log scale: the sample variances are assumed
    to follow s0^2 * F(df, d0).

    Parameters
    ----------
    s2 : array-like
        Sample variances.
    df : array-like or float
        Residual degrees of freedom of each variance.

    Returns
    -------
    tuple of float
        (d0, s0_2): prior degrees of freedom (may be inf) and prior
        variance.
    """
    s2 = np.asarray(s2, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), s2.shape)

    ok = np.isfinite(df) & (df > 1e-15) & np.isfinite(s2) & (s2 > -1e-15)
    s2 = s2[ok]
    df = df[ok]
    n = len(s2)

    if n == 0:
        return np.nan, np.nan
    if n == 1:
        return 0.0, float(s2[0])

    s2 = np.maximum(s2, 0)
    m = np.median(s2)
    if m == 0:
        m = 1.0
    s2 = np.maximum(s2, 1e-5 * m)

    e = np.log(s2) - digamma(df / 2) + np.log(df / 2)
    emean = np.mean(e)
    evar = np.sum((e - emean) ** 2) / (n - 1)
    evar = evar - np.mean(polygamma(1, df / 2))

    if evar > 0:
        d0 = 2 * float(trigamma_inverse(evar)[0])
        s0_2 = float(np.exp(emean + digamma(d0 / 2) - np.log(d0 / 2)))
    else:
        d0 = np.inf
        s0_2 = float(np.exp(emean))

    return d0, s0_2


def squeeze_var(s2, df, d0, s0_2):
    """
    Posterior variances: a df-weighted average of sample and prior variance.

    Rows without residual degrees of freedom take the prior variance.
    """
    s2 = np.asarray(s2, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), s2.shape)

    if np.isinf(d0):
        return np.full_like(s2, s0_2)

    s2 = np.where(df > 0, s2, 0.0)
    if d0 == 0:
        return np.where(df > 0, s2, np.nan)
    return (df * s2 + d0 * s0_2) / (df + d0)


def ebayes(fit):
    """
    Empirical Bayes moderated t-statistics for a fitted model.

    Parameters
    ----------
    fit : dict
        Output from lm_fit() or contrasts_fit().

    Returns
    -------
    dict
        Copy of ``fit`` with 'df_prior', 's2_prior', 's2_post',
        'df_total', 't' and 'p_value'. Proteins without residual degrees
        of freedom get NaN t and p_value.
    """
    sigma = fit['sigma']
    df_residual = fit['df_residual']
    s2 = sigma ** 2

    ok = (df_residual > 0) & np.isfinite(s2)
    if not ok.any():
        raise ValueError("No proteins have residual degrees of freedom; need replicates")

    d0, s0_2 = fit_f_dist(s2[ok], df_residual[ok])
    s2_post = squeeze_var(s2, df_residual, d0, s0_2)

    df_pooled = np.sum(df_residual[ok])
    df_total = np.minimum(df_residual + d0, df_pooled)

    with np.errstate(divide='ignore', invalid='ignore'):
        t = fit['coefficients'] / fit['stdev_unscaled'] / np.sqrt(s2_post)[:, None]
        p_value = 2 * stats.t.sf(np.abs(t), df_total[:, None])

    # no residual df: variance is prior only, protein is untested
    t[df_residual == 0] = np.nan
    p_value[df_residual == 0] = np.nan

    result = dict(fit)
    result.update({
        'df_prior': d0,
        's2_prior': s0_2,
        's2_post': s2_post,
        'df_total': df_total,
        't': t,
        'p_value': p_value,
    })
    return result


def adjust_pvalues(pvalues, method='fdr_bh'):
    """
    Multiple testing correction ignoring NaN p-values.

    ``method`` is any statsmodels multipletests method, or 'none'.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    if method == 'none':
        return pvalues.copy()

    valid_mask = ~np.isnan(pvalues)
    adj_pvalues = np.full(len(pvalues), np.nan)
    if valid_mask.any():
        _, adj_p, _, _ = multipletests(pvalues[valid_mask], method=method)
        adj_pvalues[valid_mask] = adj_p
    return adj_pvalues


def top_table(fit, coef=0, index=None, adjust='fdr_bh'):
    """
    Results for one coefficient or contrast of a moderated fit.

    Parameters
    ----------
    fit : dict
        Output from ebayes().
    coef : int or str
        Column position or name of the coefficient/contrast.
    index : pd.Index, optional
        Row labels for the returned frame.
    adjust : str, optional
        Multiple testing correction for 'adj_pvalue' (default: 'fdr_bh').

    Returns
    -------
    pd.DataFrame
        Columns 'log2FC', 'AveExpr', 't', 'pvalue', 'adj_pvalue', 'df' in
        input row order (no sorting).
    """
    if isinstance(coef, str):
        if not fit.get('coef_names') or coef not in fit['coef_names']:
            raise KeyError(f"Unknown coefficient '{coef}'")
        coef = fit['coef_names'].index(coef)

    pvalues = fit['p_value'][:, coef]

    return pd.DataFrame({
        'log2FC': fit['coefficients'][:, coef],
        'AveExpr': fit['Amean'],
        't': fit['t'][:, coef],
        'pvalue': pvalues,
        'adj_pvalue': adjust_pvalues(pvalues, adjust),
        'df': fit['df_total'],
    }, index=index)
