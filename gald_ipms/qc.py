"""
Quality control functions for the GALD IP-MS pipeline.

Generates QC plots (missing values, correlations, PCA, intensity
distributions, protein counts) and handles sample dropping after QC
review.
"""

import copy
import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .utils import _all_intensity_cols, _condition_color_map, _save_figure


def _log_matrix(data):
    """Intensity matrix on log2 scale (normalized data is already log2)."""
    matrix = data['df'][_all_intensity_cols(data['intensity_cols'])].astype(float)
    if 'normalization' in data:
        return matrix
    return np.log2(matrix.where(matrix > 0))


def pca_ip(data, n_components=2):
    """
    Principal component analysis of samples.

    Uses proteins quantified in every sample; each sample is one
    observation and proteins are standardized before projection.

    Parameters
    ----------
    data : dict
        Output from prep_ip() or norm_ip().
    n_components : int, optional
        Number of components (default: 2).

    Returns
    -------
    tuple
        (coords, explained): DataFrame of PC coordinates indexed by sample
        with a 'condition' column, and an array of explained variance ratios.
    """
    intensity_cols = data['intensity_cols']
    all_intensity = _all_intensity_cols(intensity_cols)

    pca_data = _log_matrix(data).dropna()
    if len(pca_data) < 2:
        raise ValueError(f"PCA needs at least 2 complete proteins, found {len(pca_data)}")
    if len(pca_data) < 10:
        print(f"  Warning: Only {len(pca_data)} complete proteins")

    scaled_data = StandardScaler().fit_transform(pca_data.T)

    n_components = min(n_components, *scaled_data.shape)
    pca = PCA(n_components=n_components)
    pca_coords = pca.fit_transform(scaled_data)

    coords = pd.DataFrame(
        pca_coords,
        index=all_intensity,
        columns=[f'PC{i + 1}' for i in range(n_components)]
    )
    coords['condition'] = [cond for cond, cols in intensity_cols.items() for _ in cols]

    return coords, pca.explained_variance_ratio_


def _plot_pca(coords, explained, color_map, title, base_path, formats):
    """Scatter plot of the first two principal components."""
    fig, ax = plt.subplots(figsize=(10, 8))

    for condition, group in coords.groupby('condition', sort=False):
        ax.scatter(
            group['PC1'],
            group['PC2'] if 'PC2' in group else np.zeros(len(group)),
            c=color_map[condition],
            label=condition,
            s=150,
            alpha=0.7,
            edgecolors='black',
            linewidth=1.5
        )

    for sample, row in coords.iterrows():
        ax.annotate(
            sample,
            (row['PC1'], row.get('PC2', 0.0)),
            xytext=(5, 5),
            textcoords='offset points',
            fontsize=8
        )

    ax.set_xlabel(f'PC1 ({explained[0]*100:.1f}%)', fontsize=12)
    if len(explained) > 1:
        ax.set_ylabel(f'PC2 ({explained[1]*100:.1f}%)', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')
    ax.legend(fontsize=11, loc='best')
    ax.grid(alpha=0.3)

    plt.tight_layout()
    _save_figure(fig, base_path, formats)


def qc_ip(data, output_suffix=''):
    """
    Generate quality control plots and metrics.

    Creates:
    - Missing value heatmap
    - Sample correlation heatmap
    - PCA plot
    - Log2 intensity distributions per sample
    - Number of quantified proteins per sample

    Parameters
    ----------
    data : dict
        Output from prep_ip() or norm_ip().
    output_suffix : str, optional
        Suffix to add to output filenames, e.g. '_normalized'.

    Returns
    -------
    dict
        'pca': PCA coordinates (None when fewer than 2 proteins are
        complete), 'explained_variance': variance ratios,
        'proteins_per_sample': Series of quantified protein counts,
        'within_condition_correlation': mean pairwise correlation per condition.

    Example
    -------
    >>> qc_ip(data)
    >>> data = norm_ip(data)
    >>> qc_ip(data, output_suffix='_normalized')
    """

    print("\n" + "="*80)
    print("QUALITY CONTROL ANALYSIS")
    if output_suffix:
        print(f"Output suffix: {output_suffix}")
    print("="*80)

    intensity_cols = data['intensity_cols']
    qc_dir = data['output_dirs']['qc']
    formats = data['config']['plots']['formats']
    color_map = _condition_color_map(intensity_cols)

    all_intensity = _all_intensity_cols(intensity_cols)
    matrix = _log_matrix(data)
    sample_colors = [color_map[cond] for cond, cols in intensity_cols.items() for _ in cols]

    print(f"\nGenerating QC plots...")
    print(f"  Output directory: {qc_dir}")

    # =========================================================================
    # 1. MISSING VALUES HEATMAP
    # =========================================================================
    print(f"\n[1/5] Creating missing values heatmap...")

    presence_data = matrix.notna().astype(int)

    fig, ax = plt.subplots(figsize=(12, 8))
    sns.heatmap(
        presence_data.T,
        cmap='RdYlGn',
        vmin=0,
        vmax=1,
        cbar_kws={'label': 'Present (1) vs Missing (0)'},
        yticklabels=all_intensity,
        xticklabels=False,
        ax=ax
    )
    ax.set_title('Missing Value Pattern Across Samples', fontsize=14, fontweight='bold')
    ax.set_xlabel('Proteins', fontsize=12)
    ax.set_ylabel('Samples', fontsize=12)

    plt.tight_layout()
    _save_figure(fig, os.path.join(qc_dir, f'01_missing_values{output_suffix}'), formats)

    total_values = presence_data.size
    pct_missing = (1 - presence_data.to_numpy().sum() / total_values) * 100 if total_values else 0.0
    print(f"  > Saved: 01_missing_values{output_suffix}")
    print(f"    Overall: {pct_missing:.1f}% missing values")

    # =========================================================================
    # 2. CORRELATION HEATMAP
    # =========================================================================
    print(f"\n[2/5] Creating sample correlation heatmap...")

    corr_data = matrix.corr()

    fig, ax = plt.subplots(figsize=(12, 10))
    sns.heatmap(
        corr_data,
        annot=len(all_intensity) <= 15,
        fmt='.2f',
        cmap='RdBu_r',
        vmin=0,
        vmax=1,
        square=True,
        cbar_kws={'label': 'Pearson Correlation (log2)'},
        ax=ax
    )
    ax.set_title('Sample-to-Sample Correlation', fontsize=14, fontweight='bold')
    ax.set_xticklabels(ax.get_xticklabels(), rotation=45, ha='right', fontsize=8)
    ax.set_yticklabels(ax.get_yticklabels(), rotation=0, fontsize=8)

    plt.tight_layout()
    _save_figure(fig, os.path.join(qc_dir, f'02_correlation_heatmap{output_suffix}'), formats)
    print(f"  > Saved: 02_correlation_heatmap{output_suffix}")

    within_corr = {}
    print(f"\n  Average correlations within conditions:")
    for condition, cols in intensity_cols.items():
        if len(cols) > 1:
            condition_corr = corr_data.loc[cols, cols]
            mask = np.triu(np.ones_like(condition_corr), k=1).astype(bool)
            within_corr[condition] = float(condition_corr.where(mask).stack().mean())
            print(f"    {condition}: {within_corr[condition]:.3f}")

    # =========================================================================
    # 3. PCA PLOT
    # =========================================================================
    print(f"\n[3/5] Creating PCA plot...")

    try:
        coords, explained = pca_ip(data)
    except ValueError as e:
        print(f"  Warning: {e}, skipping PCA plot")
        coords, explained = None, None

    if coords is not None:
        _plot_pca(
            coords, explained, color_map,
            title='PCA - Sample Clustering',
            base_path=os.path.join(qc_dir, f'03_pca_plot{output_suffix}'),
            formats=formats,
        )
        print(f"  > Saved: 03_pca_plot{output_suffix}")
        for i, ratio in enumerate(explained[:2]):
            print(f"    PC{i + 1} explains {ratio*100:.1f}% of variance")

    # =========================================================================
    # 4. INTENSITY DISTRIBUTIONS
    # =========================================================================
    print(f"\n[4/5] Creating intensity distribution boxplots...")

    long_df = matrix.melt(var_name='Sample', value_name='Log2_Intensity').dropna()

    fig, ax = plt.subplots(figsize=(max(8, len(all_intensity) * 0.5), 6))
    sns.boxplot(
        data=long_df, x='Sample', y='Log2_Intensity', order=all_intensity,
        palette=dict(zip(all_intensity, sample_colors)), hue='Sample', legend=False,
        ax=ax, linewidth=1, fliersize=2
    )
    ax.set_title('Log2 Intensity Distribution per Sample', fontsize=14, fontweight='bold')
    ax.set_xlabel('')
    ax.set_ylabel('Log2 Intensity', fontsize=12)
    ax.tick_params(axis='x', rotation=90, labelsize=8)
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()
    _save_figure(fig, os.path.join(qc_dir, f'04_intensity_boxplot{output_suffix}'), formats)
    print(f"  > Saved: 04_intensity_boxplot{output_suffix}")

    # =========================================================================
    # 5. PROTEINS PER SAMPLE
    # =========================================================================
    print(f"\n[5/5] Counting quantified proteins per sample...")

    proteins_per_sample = presence_data.sum(axis=0)

    fig, ax = plt.subplots(figsize=(max(8, len(all_intensity) * 0.5), 6))
    ax.bar(all_intensity, proteins_per_sample[all_intensity], color=sample_colors,
           edgecolor='black', linewidth=0.8)
    ax.set_title('Quantified Proteins per Sample', fontsize=14, fontweight='bold')
    ax.set_ylabel('Proteins', fontsize=12)
    ax.tick_params(axis='x', rotation=90, labelsize=8)
    ax.grid(axis='y', alpha=0.3)

    plt.tight_layout()
    _save_figure(fig, os.path.join(qc_dir, f'05_proteins_per_sample{output_suffix}'), formats)
    print(f"  > Saved: 05_proteins_per_sample{output_suffix}")
    print(f"    Range: {proteins_per_sample.min()} to {proteins_per_sample.max()} proteins")

    print("\n" + "="*80)
    print("QC COMPLETE")
    print("="*80)
    print(f"\nPlots saved to: {qc_dir}")
    print("="*80 + "\n")

    return {
        'pca': coords,
        'explained_variance': explained,
        'proteins_per_sample': proteins_per_sample,
        'within_condition_correlation': within_corr,
    }


def drop_samples(data, samples_to_drop):
    """
    Remove problematic samples from the dataset after QC review.

    Use this after reviewing QC plots to exclude samples that:
    - Have poor correlation with replicates
    - Cluster away from replicates in PCA
    - Have few quantified proteins

    Parameters
    ----------
    data : dict
        Output from prep_ip().
    samples_to_drop : list of str or dict
        Samples to remove. Can be:
        - List of sample labels
        - Dict mapping conditions to replicate numbers: {'GALD': [1, 2]}

    Returns
    -------
    dict
        Updated data dictionary with samples removed.

    Example
    -------
    >>> data = drop_samples(data, samples_to_drop=['GALD_3'])
    >>> data = drop_samples(data, samples_to_drop={'Healthy': [2]})
    """

    df = data['df']
    intensity_cols = data['intensity_cols']

    print("\n" + "="*80)
    print("DROP SAMPLES (MANUAL QC)")
    print("="*80)

    if isinstance(samples_to_drop, dict):
        cols_to_drop = []
        for condition, replicate_nums in samples_to_drop.items():
            if condition not in intensity_cols:
                print(f"  Warning: Condition '{condition}' not found")
                continue
            for rep_num in replicate_nums:
                if 0 < rep_num <= len(intensity_cols[condition]):
                    cols_to_drop.append(intensity_cols[condition][rep_num - 1])
                else:
                    print(f"  Warning: {condition} replicate {rep_num} doesn't exist")

    elif isinstance(samples_to_drop, (list, tuple)):
        cols_to_drop = list(samples_to_drop)

    else:
        raise ValueError("samples_to_drop must be a list of labels or a dict of replicate numbers")

    all_intensity = _all_intensity_cols(intensity_cols)
    unknown = [c for c in cols_to_drop if c not in all_intensity]
    for col in unknown:
        print(f"  Warning: Sample '{col}' not found")
    cols_to_drop = [c for c in cols_to_drop if c in all_intensity]

    if not cols_to_drop:
        print("\nNo valid samples to drop.")
        return data

    print(f"\nDropping {len(cols_to_drop)} sample(s):")
    for col in cols_to_drop:
        print(f"  - {col}")

    intensity_cols_updated = {}
    for condition, cols in intensity_cols.items():
        updated_cols = [c for c in cols if c not in cols_to_drop]
        if updated_cols:
            intensity_cols_updated[condition] = updated_cols
        else:
            print(f"  Warning: All {condition} samples dropped! Condition removed.")

    remaining = _all_intensity_cols(intensity_cols_updated)

    metadata_updated = data['metadata'].copy()
    metadata_updated['n_samples'] = len(remaining)
    metadata_updated['n_conditions'] = len(intensity_cols_updated)
    metadata_updated['conditions'] = list(intensity_cols_updated.keys())
    metadata_updated['replicates_per_condition'] = {
        k: len(v) for k, v in intensity_cols_updated.items()
    }
    metadata_updated['samples_dropped'] = list(data['metadata'].get('samples_dropped', [])) + cols_to_drop

    data_updated = copy.copy(data)
    data_updated['df'] = df.drop(columns=cols_to_drop)
    data_updated['config'] = copy.deepcopy(data['config'])
    data_updated['design'] = data['design'][data['design']['label'].isin(remaining)].reset_index(drop=True)
    data_updated['intensity_cols'] = intensity_cols_updated
    data_updated['metadata'] = metadata_updated
    if 'raw_df' in data:
        data_updated['raw_df'] = data['raw_df'].drop(columns=cols_to_drop)

    print("\n" + "="*80)
    print("SAMPLES DROPPED")
    print("="*80)
    print(f"\nRemaining samples: {metadata_updated['n_samples']}")
    print(f"\nReplicates per condition:")
    for condition, n_reps in metadata_updated['replicates_per_condition'].items():
        print(f"  {condition}: {n_reps} replicates")
    print("="*80 + "\n")

    return data_updated
