"""
Differential abundance analysis for the GALD IP-MS pipeline.

Fits a linear model with empirical Bayes moderated t-statistics (limma
method) for each comparison, or per-protein two-sample t-tests, and
applies multiple testing correction.
"""

import copy
import os

import numpy as np
import pandas as pd
from scipy.stats import ttest_ind

from .limma import (
    adjust_pvalues,
    contrasts_fit,
    ebayes,
    lm_fit,
    make_contrasts,
    make_design,
    top_table,
)
from .utils import GENE_COL, PROTEIN_COL, _all_intensity_cols, _comparisons, save_data

STAT_METHODS = ('limma', 'ttest')
CORRECTIONS = ('fdr_bh', 'bonferroni', 'none')


def _limma_tables(df, intensity_cols, comparisons):
    """Moderated t results per comparison, plus prior estimates."""
    all_intensity = _all_intensity_cols(intensity_cols)
    sample_conditions = [cond for cond, cols in intensity_cols.items() for _ in cols]
    levels = list(intensity_cols.keys())

    design = make_design(sample_conditions, levels=levels)
    contrasts = make_contrasts(comparisons, levels)

    fit = lm_fit(df[all_intensity].to_numpy(dtype=float), design)
    fit = ebayes(contrasts_fit(fit, contrasts))

    print(f"  Prior df: {fit['df_prior']:.2f}, prior variance: {fit['s2_prior']:.4f}")

    tables = {
        name: top_table(fit, name, index=df.index)
        for name in contrasts.columns
    }
    prior = {'df_prior': float(fit['df_prior']), 's2_prior': float(fit['s2_prior'])}
    return tables, prior


def _ttest_tables(df, intensity_cols, comparisons):
    """Two-sample t-test results per comparison."""
    tables = {}
    for numerator, denominator in comparisons:
        num_cols = intensity_cols[numerator]
        den_cols = intensity_cols[denominator]

        log2fc = df[num_cols].mean(axis=1) - df[den_cols].mean(axis=1)

        tvalues = []
        pvalues = []
        for idx in df.index:
            num_vals = df.loc[idx, num_cols].dropna()
            den_vals = df.loc[idx, den_cols].dropna()

            if len(num_vals) >= 2 and len(den_vals) >= 2:
                tval, pval = ttest_ind(num_vals, den_vals)
                tvalues.append(tval)
                pvalues.append(pval)
            else:
                tvalues.append(np.nan)
                pvalues.append(np.nan)

        tables[f"{numerator}_vs_{denominator}"] = pd.DataFrame({
            'log2FC': log2fc,
            'AveExpr': df[num_cols + den_cols].mean(axis=1),
            't': tvalues,
            'pvalue': pvalues,
        }, index=df.index)

    return tables


def stat_ip(data, p_threshold=0.05, log2fc_threshold=1.0, correction='fdr_bh', method='limma'):
    """
    Test each comparison for differentially abundant proteins.

    For each comparison (e.g. GALD vs Healthy):
    - Estimates the log2 fold change
    - Computes a moderated t-statistic ('limma') or a t-test ('ttest')
    - Applies multiple testing correction
    - Classifies proteins as enriched, depleted or not significant

    Parameters
    ----------
    data : dict
        Output from norm_ip().
    p_threshold : float, optional
        Adjusted p-value threshold for significance (default: 0.05).
    log2fc_threshold : float, optional
        Absolute log2 fold change threshold for significance (default: 1.0).
    correction : str, optional
        Multiple testing correction method (default: 'fdr_bh').
        Options: 'fdr_bh' (Benjamini-Hochberg), 'bonferroni', 'none'.
    method : str, optional
        'limma' (default) for empirical Bayes moderated t-statistics on the
        observed values, or 'ttest' for per-protein Student t-tests.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'stats_results': DataFrame with all proteins and statistics
        - 'significant_proteins': Dict of significant proteins per comparison
        - 'stats_params': Parameters used for analysis

    Example
    -------
    >>> data = norm_ip(data)
    >>> data = stat_ip(data, p_threshold=0.05, log2fc_threshold=1.0)
    """
    if method not in STAT_METHODS:
        raise ValueError(f"Unknown method '{method}'. Options: {', '.join(STAT_METHODS)}")
    if correction not in CORRECTIONS:
        raise ValueError(f"Unknown correction '{correction}'. Options: {', '.join(CORRECTIONS)}")

    print("\n" + "="*80)
    print("DIFFERENTIAL ABUNDANCE ANALYSIS")
    print("="*80)

    df = data['df'].copy()
    config = data['config']
    intensity_cols = data['intensity_cols']

    comparisons = _comparisons(config, conditions=list(intensity_cols.keys()))

    print(f"\nMethod: {method}")
    print(f"Comparisons: {', '.join(f'{a}_vs_{b}' for a, b in comparisons)}")
    print(f"\nThresholds:")
    print(f"  Adjusted p-value: {p_threshold}")
    print(f"  |Log2 FC|: {log2fc_threshold}")
    print(f"  Correction: {correction}")

    # =========================================================================
    # 1. PREPARE RESULTS DATAFRAME
    # =========================================================================
    print(f"\n[1/4] Preparing data...")

    info_cols = [PROTEIN_COL, GENE_COL]
    for key in ('protein_names', 'protein_id'):
        col = config['data_columns'].get(key)
        if col and col in df.columns and col not in info_cols:
            info_cols.append(col)

    results_df = df[info_cols].copy()
    for condition, cols in intensity_cols.items():
        results_df[f'n_valid_{condition}'] = df[cols].notna().sum(axis=1)

    print(f"  > Starting with {len(results_df)} proteins")

    # =========================================================================
    # 2. CALCULATE STATISTICS FOR EACH COMPARISON
    # =========================================================================
    print(f"\n[2/4] Calculating statistics...")

    prior = None
    if method == 'limma':
        tables, prior = _limma_tables(df, intensity_cols, comparisons)
    else:
        tables = _ttest_tables(df, intensity_cols, comparisons)

    significant_proteins = {}

    for comparison_name, table in tables.items():
        print(f"\n  Analyzing: {comparison_name}")

        log2fc = table['log2FC'].to_numpy()
        pvalues = table['pvalue'].to_numpy()
        adj_pvalues = adjust_pvalues(pvalues, correction)

        results_df[f'{comparison_name}_log2FC'] = log2fc
        results_df[f'{comparison_name}_AveExpr'] = table['AveExpr'].to_numpy()
        results_df[f'{comparison_name}_t'] = table['t'].to_numpy()
        results_df[f'{comparison_name}_pvalue'] = pvalues
        results_df[f'{comparison_name}_adj_pvalue'] = adj_pvalues

        with np.errstate(invalid='ignore'):
            passes_p = np.nan_to_num(adj_pvalues, nan=1.0) < p_threshold
            enriched = passes_p & (np.nan_to_num(log2fc) > log2fc_threshold)
            depleted = passes_p & (np.nan_to_num(log2fc) < -log2fc_threshold)

        results_df[f'{comparison_name}_significant'] = np.select(
            [enriched, depleted], ['enriched', 'depleted'], default='not_significant'
        )

        sig_mask = enriched | depleted
        n_tested = int((~np.isnan(pvalues)).sum())

        print(f"    Tested: {n_tested} proteins")
        print(f"    Total significant: {sig_mask.sum()}")
        print(f"      Enriched: {enriched.sum()}")
        print(f"      Depleted: {depleted.sum()}")

        significant_proteins[comparison_name] = {
            'total': int(sig_mask.sum()),
            'enriched': int(enriched.sum()),
            'depleted': int(depleted.sum()),
            'tested': n_tested,
            'protein_ids': results_df.loc[sig_mask, PROTEIN_COL].tolist()
        }

    # =========================================================================
    # 3. SAVE RESULTS
    # =========================================================================
    print(f"\n[3/4] Saving results...")

    threshold_label = f"pval{str(p_threshold).replace('.', '')}_l2fc{str(log2fc_threshold).replace('.', '')}"

    output_dir = data['output_dirs']['tables']
    os.makedirs(output_dir, exist_ok=True)

    results_path = os.path.join(output_dir, f'stats_results_{threshold_label}.csv')
    results_df.to_csv(results_path, index=False)
    print(f"  > Saved: stats_results_{threshold_label}.csv")
    print(f"    {len(results_df)} proteins x {len(results_df.columns)} columns")

    for comparison_name in significant_proteins.keys():
        sig_df = results_df[results_df[f'{comparison_name}_significant'] != 'not_significant']

        if len(sig_df) > 0:
            sig_path = os.path.join(output_dir, f'{comparison_name}_significant_{threshold_label}.csv')
            sig_df.sort_values(f'{comparison_name}_pvalue').to_csv(sig_path, index=False)
            print(f"  > Saved: {comparison_name}_significant_{threshold_label}.csv ({len(sig_df)} proteins)")

    # =========================================================================
    # 4. CREATE SUMMARY TABLE
    # =========================================================================
    print(f"\n[4/4] Creating summary...")

    summary_df = pd.DataFrame([
        {
            'Comparison': comparison_name,
            'Tested': stats['tested'],
            'Total_Significant': stats['total'],
            'Enriched': stats['enriched'],
            'Depleted': stats['depleted'],
            'Method': method,
            'P_threshold': p_threshold,
            'Log2FC_threshold': log2fc_threshold,
            'Correction': correction
        }
        for comparison_name, stats in significant_proteins.items()
    ])
    summary_df.to_csv(os.path.join(output_dir, f'summary_{threshold_label}.csv'), index=False)
    print(f"  > Saved: summary_{threshold_label}.csv")

    # =========================================================================
    # 5. UPDATE DATA DICTIONARY
    # =========================================================================
    data_updated = copy.copy(data)
    data_updated['df'] = df
    data_updated['stats_results'] = results_df
    data_updated['stats_summary'] = summary_df
    data_updated['significant_proteins'] = significant_proteins
    data_updated['stats_params'] = {
        'method': method,
        'p_threshold': p_threshold,
        'log2fc_threshold': log2fc_threshold,
        'correction': correction,
        'threshold_label': threshold_label,
        'comparisons': [f"{a}_vs_{b}" for a, b in comparisons],
        'prior': prior,
    }

    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_stat.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("DIFFERENTIAL ABUNDANCE ANALYSIS COMPLETE")
    print("="*80)
    for comparison_name, stats in significant_proteins.items():
        print(f"\n{comparison_name}: {stats['total']} significant "
              f"({stats['enriched']} enriched, {stats['depleted']} depleted)")

    print("\n" + "="*80)
    print("Next step: viz_ip() for volcano plots and heatmaps")
    print("="*80 + "\n")

    return data_updated
