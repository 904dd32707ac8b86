"""
Visualization functions for the GALD IP-MS pipeline.

Generates volcano plots, MA plots, heatmaps, protein boxplots and Venn
diagrams from differential abundance results.
"""

import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from adjustText import adjust_text
from matplotlib_venn import venn2, venn3

from .utils import GENE_COL, PROTEIN_COL, _all_intensity_cols, _condition_color_map, _save_figure

_CATEGORY_COLORS = {
    'not_significant': '#CCCCCC',
    'depleted': '#3498DB',
    'enriched': '#E74C3C',
}


def _significant_union(stats_results, comparisons):
    """Row mask of proteins significant in at least one comparison."""
    mask = pd.Series(False, index=stats_results.index)
    for comparison in comparisons:
        mask = mask | (stats_results[f'{comparison}_significant'] != 'not_significant')
    return mask


def _volcano(stats_results, comparison, stats_params, label_top_n, labeled, base_path, formats):
    log2fc = stats_results[f'{comparison}_log2FC']
    adj_p = stats_results[f'{comparison}_adj_pvalue']
    category = stats_results[f'{comparison}_significant']

    neg_log10_pval = -np.log10(adj_p.clip(lower=1e-300))

    fig, ax = plt.subplots(figsize=(10, 8))

    for cat, label in [('not_significant', 'Not Significant'),
                       ('depleted', 'Depleted'),
                       ('enriched', 'Enriched')]:
        mask = category == cat
        ax.scatter(
            log2fc[mask],
            neg_log10_pval[mask],
            c=_CATEGORY_COLORS[cat],
            label=f'{label} ({mask.sum()})',
            s=30,
            alpha=0.7,
            edgecolors='none'
        )

    p_thresh = stats_params['p_threshold']
    fc_thresh = stats_params['log2fc_threshold']

    ax.axhline(-np.log10(p_thresh), color='black', linestyle='--',
               linewidth=1, alpha=0.5, label=f'adj. p = {p_thresh}')
    ax.axvline(fc_thresh, color='black', linestyle='--', linewidth=1, alpha=0.5)
    ax.axvline(-fc_thresh, color='black', linestyle='--', linewidth=1, alpha=0.5)

    if labeled:
        sig = stats_results[category != 'not_significant']
        top = sig.nsmallest(label_top_n, f'{comparison}_pvalue')
        texts = [
            ax.text(row[f'{comparison}_log2FC'], neg_log10_pval[idx], row[GENE_COL],
                    fontsize=8, alpha=0.9)
            for idx, row in top.iterrows()
        ]
        if texts:
            adjust_text(texts, ax=ax, arrowprops=dict(arrowstyle='-', color='black', lw=0.5))

    ax.set_xlabel('Log2 Fold Change', fontsize=12, fontweight='bold')
    ax.set_ylabel('-Log10 Adjusted P-value', fontsize=12, fontweight='bold')
    ax.set_title(f'Volcano Plot: {comparison.replace("_vs_", " vs ")}', fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=9)
    ax.grid(alpha=0.3)

    plt.tight_layout()
    _save_figure(fig, base_path, formats)


def viz_ip(data, create_volcano=True, create_ma=True, create_heatmap=True, label_top_n=None):
    """
    Create visualization plots for differential abundance results.

    Creates:
    - Volcano plots per comparison (labeled and unlabeled versions)
    - MA plots per comparison (average abundance vs fold change)
    - Clustered heatmap of significant proteins (row z-scored intensities)

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    create_volcano, create_ma, create_heatmap : bool, optional
        Toggle the individual plot types (default: all True).
    label_top_n : int, optional
        Number of significant proteins labelled on volcano plots
        (default: plots.label_top_n from the config).

    Returns
    -------
    list of str
        Paths of the written figures.

    Example
    -------
    >>> data = stat_ip(data)
    >>> viz_ip(data)
    """

    print("\n" + "="*80)
    print("CREATING VISUALIZATIONS")
    print("="*80)

    df = data['df']
    config = data['config']
    intensity_cols = data['intensity_cols']
    stats_results = data['stats_results']
    stats_params = data['stats_params']

    formats = config['plots']['formats']
    if label_top_n is None:
        label_top_n = config['plots']['label_top_n']

    viz_dir = data['output_dirs']['viz']
    os.makedirs(viz_dir, exist_ok=True)
    label = stats_params['threshold_label']
    comparisons = stats_params['comparisons']
    written = []

    print(f"\nOutput directory: {viz_dir}")

    # =========================================================================
    # 1. VOLCANO PLOTS
    # =========================================================================
    if create_volcano:
        print(f"\n[1/3] Creating volcano plots...")

        for comparison in comparisons:
            for labeled in (True, False):
                suffix = '' if labeled else '_clean'
                base_path = os.path.join(viz_dir, f'volcano_{comparison}_{label}{suffix}')
                _volcano(stats_results, comparison, stats_params, label_top_n,
                         labeled, base_path, formats)
                written.extend(f"{base_path}.{fmt}" for fmt in formats)
            print(f"  > Saved: volcano_{comparison}_{label} (labeled and clean)")

    # =========================================================================
    # 2. MA PLOTS
    # =========================================================================
    if create_ma:
        print(f"\n[2/3] Creating MA plots...")

        for comparison in comparisons:
            category = stats_results[f'{comparison}_significant']

            fig, ax = plt.subplots(figsize=(10, 7))
            for cat in ('not_significant', 'depleted', 'enriched'):
                mask = category == cat
                ax.scatter(
                    stats_results.loc[mask, f'{comparison}_AveExpr'],
                    stats_results.loc[mask, f'{comparison}_log2FC'],
                    c=_CATEGORY_COLORS[cat],
                    label=cat.replace('_', ' '),
                    s=20,
                    alpha=0.7,
                    edgecolors='none'
                )
            ax.axhline(0, color='black', linewidth=1)
            ax.set_xlabel('Average Log2 Intensity', fontsize=12)
            ax.set_ylabel('Log2 Fold Change', fontsize=12)
            ax.set_title(f'MA Plot: {comparison.replace("_vs_", " vs ")}', fontsize=14, fontweight='bold')
            ax.legend(fontsize=9)
            ax.grid(alpha=0.3)

            plt.tight_layout()
            base_path = os.path.join(viz_dir, f'ma_{comparison}_{label}')
            written.extend(_save_figure(fig, base_path, formats))
            print(f"  > Saved: ma_{comparison}_{label}")

    # =========================================================================
    # 3. HEATMAP OF SIGNIFICANT PROTEINS
    # =========================================================================
    if create_heatmap:
        print(f"\n[3/3] Creating heatmap of significant proteins...")

        sig_mask = _significant_union(stats_results, comparisons)
        print(f"  Total unique significant proteins: {sig_mask.sum()}")

        if sig_mask.sum() >= 2:
            all_intensity = _all_intensity_cols(intensity_cols)
            heatmap_data = df.loc[sig_mask[sig_mask].index, all_intensity]
            heatmap_data.index = stats_results.loc[heatmap_data.index, GENE_COL].values

            row_mean = heatmap_data.mean(axis=1)
            row_std = heatmap_data.std(axis=1).replace(0, 1)
            zscores = heatmap_data.sub(row_mean, axis=0).div(row_std, axis=0).fillna(0)

            color_map = _condition_color_map(intensity_cols)
            col_colors = pd.Series(
                [color_map[cond] for cond, cols in intensity_cols.items() for _ in cols],
                index=all_intensity,
                name='Condition'
            )

            g = sns.clustermap(
                zscores,
                cmap='RdBu_r',
                center=0,
                col_colors=col_colors,
                cbar_kws={'label': 'Row z-score (log2 intensity)'},
                yticklabels=len(zscores) <= 100,
                xticklabels=True,
                figsize=(14, max(8, min(len(zscores) * 0.2, 30))),
                row_cluster=True,
                col_cluster=False,
                method='average',
                metric='euclidean'
            )
            g.ax_heatmap.set_xlabel('Samples', fontsize=12)
            g.ax_heatmap.set_ylabel('Proteins', fontsize=12)
            g.ax_heatmap.set_xticklabels(g.ax_heatmap.get_xticklabels(), rotation=45, ha='right', fontsize=8)

            handles = [plt.Rectangle((0, 0), 1, 1, color=c) for c in color_map.values()]
            g.ax_heatmap.legend(handles, color_map.keys(), title='Condition',
                                bbox_to_anchor=(1.15, 1.1), loc='upper left', fontsize=8)
            g.fig.suptitle(f'Significant Proteins ({len(zscores)})', fontsize=14, fontweight='bold', y=1.02)

            base_path = os.path.join(viz_dir, f'heatmap_significant_{label}')
            written.extend(_save_figure(g.fig, base_path, formats))
            print(f"  > Saved: heatmap_significant_{label}")
        else:
            print(f"  Warning: Fewer than 2 significant proteins, skipping heatmap")

    print("\n" + "="*80)
    print("VISUALIZATION COMPLETE")
    print("="*80)
    print(f"\nPlots saved to: {viz_dir}")
    print("="*80 + "\n")

    return written


def _boxplot_frame(df, rows, intensity_cols):
    """Long-format intensities, one group per table row."""
    plot_data = []
    for idx in rows:
        for condition, cols in intensity_cols.items():
            for col in cols:
                intensity = df.loc[idx, col]
                if pd.notna(intensity):
                    plot_data.append({
                        'Row': idx,
                        'Condition': condition,
                        'Log2_Intensity': intensity,
                    })
    return pd.DataFrame(plot_data, columns=['Row', 'Condition', 'Log2_Intensity'])


def boxplot_ip(data, proteins=None, top_n=12):
    """
    Plot normalized intensities of selected proteins by condition.

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    proteins : list of str, optional
        Gene symbols or protein IDs to plot. If None, the top_n significant
        proteins with the smallest p-value in any comparison are used.
    top_n : int, optional
        Number of proteins when ``proteins`` is None (default: 12).

    Returns
    -------
    list of str or None
        Written figure paths, or None when there is nothing to plot.

    Example
    -------
    >>> boxplot_ip(data, proteins=['C3', 'APOA1'])
    """

    print("\n" + "="*80)
    print("CREATING PROTEIN BOXPLOTS")
    print("="*80)

    df = data['df']
    intensity_cols = data['intensity_cols']
    stats_results = data['stats_results']
    stats_params = data['stats_params']
    formats = data['config']['plots']['formats']
    palette = _condition_color_map(intensity_cols)

    if proteins is not None:
        wanted = set(proteins)
        selected = stats_results[
            stats_results[GENE_COL].isin(wanted) | stats_results[PROTEIN_COL].isin(wanted)
        ]
        missing = wanted - set(selected[GENE_COL]) - set(selected[PROTEIN_COL])
        for name in sorted(missing):
            print(f"  Warning: Protein '{name}' not found")
    else:
        sig = stats_results[_significant_union(stats_results, stats_params['comparisons'])]
        pval_cols = [f'{c}_pvalue' for c in stats_params['comparisons']]
        order = sig[pval_cols].min(axis=1).sort_values().index
        selected = sig.loc[order].head(top_n)

    if len(selected) == 0:
        print("  Warning: No proteins to plot!")
        return None

    print(f"\n  Plotting {len(selected)} proteins")

    plot_df = _boxplot_frame(df, selected.index, intensity_cols)
    duplicated = selected[GENE_COL].duplicated(keep=False)

    n_proteins = len(selected)
    n_cols = min(4, n_proteins)
    n_rows = int(np.ceil(n_proteins / n_cols))

    fig, axes = plt.subplots(n_rows, n_cols, figsize=(4*n_cols, 3.5*n_rows), squeeze=False)
    axes = axes.flatten()
    order = list(intensity_cols.keys())

    for i, (idx, row) in enumerate(selected.iterrows()):
        ax = axes[i]
        protein_data = plot_df[plot_df['Row'] == idx]
        title = f"{row[GENE_COL]} ({row[PROTEIN_COL]})" if duplicated[idx] else f'{row[GENE_COL]}'

        sns.boxplot(data=protein_data, x='Condition', y='Log2_Intensity', order=order,
                    hue='Condition', hue_order=order, palette=palette, legend=False,
                    ax=ax, linewidth=1.2, showfliers=False)
        sns.stripplot(data=protein_data, x='Condition', y='Log2_Intensity', order=order,
                      ax=ax, color='black', alpha=0.7, size=4)

        ax.set_title(title, fontsize=11, fontweight='bold')
        ax.set_xlabel('')
        ax.set_ylabel('Log2 Intensity', fontsize=9)
        ax.grid(axis='y', alpha=0.3)

    for i in range(n_proteins, len(axes)):
        axes[i].set_visible(False)

    plt.tight_layout()
    base_path = os.path.join(data['output_dirs']['viz'], f'boxplot_proteins_{stats_params["threshold_label"]}')
    written = _save_figure(fig, base_path, formats)

    print(f"  > Saved: boxplot_proteins_{stats_params['threshold_label']}")
    print("="*80 + "\n")

    return written


def venn_ip(data, direction='both'):
    """
    Venn diagram of significant protein overlap between comparisons.

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    direction : str, optional
        'both' (default), 'enriched' or 'depleted'.

    Returns
    -------
    dict or None
        'protein_sets' (protein IDs per comparison) and 'overlaps'
        (region name -> set), or None for fewer than 2 or more than 3
        comparisons.

    Example
    -------
    >>> overlaps = venn_ip(data)['overlaps']
    """

    print("\n" + "="*80)
    print("CREATING VENN DIAGRAM")
    print("="*80)

    stats_results = data['stats_results']
    stats_params = data['stats_params']
    comparisons = stats_params['comparisons']
    formats = data['config']['plots']['formats']

    if direction not in ('both', 'enriched', 'depleted'):
        raise ValueError(f"Unknown direction '{direction}'. Options: both, enriched, depleted")

    if len(comparisons) not in (2, 3):
        print(f"  Warning: Venn diagrams need 2 or 3 comparisons, found {len(comparisons)}")
        return None

    protein_sets = {}
    for comparison in comparisons:
        category = stats_results[f'{comparison}_significant']
        if direction == 'both':
            mask = category != 'not_significant'
        else:
            mask = category == direction
        protein_sets[comparison] = set(stats_results.loc[mask, PROTEIN_COL])
        print(f"  {comparison}: {len(protein_sets[comparison])} {direction} proteins")

    sets = [protein_sets[c] for c in comparisons]
    labels = [c.replace('_vs_', ' vs ') for c in comparisons]

    if len(sets) == 2:
        overlaps = {
            f'{comparisons[0]}_only': sets[0] - sets[1],
            f'{comparisons[1]}_only': sets[1] - sets[0],
            'shared': sets[0] & sets[1],
        }
    else:
        overlaps = {
            f'{comparisons[0]}_only': sets[0] - sets[1] - sets[2],
            f'{comparisons[1]}_only': sets[1] - sets[0] - sets[2],
            f'{comparisons[2]}_only': sets[2] - sets[0] - sets[1],
            'shared_all': sets[0] & sets[1] & sets[2],
        }

    print(f"\n  Overlaps:")
    for region, members in overlaps.items():
        print(f"    {region}: {len(members)}")

    if not any(sets):
        print(f"  Warning: No significant proteins, skipping diagram")
        return {'protein_sets': protein_sets, 'overlaps': overlaps}

    fig, ax = plt.subplots(figsize=(10, 8))
    if len(sets) == 2:
        venn2(sets, set_labels=labels, ax=ax)
    else:
        venn3(sets, set_labels=labels, ax=ax)

    ax.set_title(f'Significant Protein Overlap ({direction})\n{stats_params["threshold_label"]}',
                 fontsize=14, fontweight='bold')

    plt.tight_layout()
    base_path = os.path.join(data['output_dirs']['viz'], f'venn_{direction}_{stats_params["threshold_label"]}')
    _save_figure(fig, base_path, formats)

    print(f"  > Saved: venn_{direction}_{stats_params['threshold_label']}")
    print("="*80 + "\n")

    return {'protein_sets': protein_sets, 'overlaps': overlaps}
