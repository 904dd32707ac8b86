"""Tests for gald_ipms.visualization module."""

import copy
import os

import pytest

from gald_ipms import boxplot_ip, venn_ip, viz_ip
from gald_ipms.utils import GENE_COL, PROTEIN_COL
from gald_ipms.visualization import _boxplot_frame


class TestVizIp:
    def test_writes_all_plots(self, stat_data):
        written = viz_ip(stat_data)
        label = stat_data['stats_params']['threshold_label']
        viz_dir = stat_data['output_dirs']['viz']

        assert written
        assert all(os.path.exists(p) for p in written)
        for name in (f'volcano_GALD_vs_Healthy_{label}', f'volcano_GALD_vs_Healthy_{label}_clean',
                     f'ma_GALD_vs_Healthy_{label}', f'heatmap_significant_{label}'):
            assert os.path.join(viz_dir, f'{name}.png') in written

    def test_plot_toggles(self, stat_data):
        written = viz_ip(stat_data, create_volcano=False, create_heatmap=False)

        assert len(written) == 1
        assert os.path.basename(written[0]).startswith('ma_')

    def test_heatmap_skipped_without_hits(self, normed_data):
        from gald_ipms import stat_ip

        data = stat_ip(normed_data, log2fc_threshold=100.0)
        written = viz_ip(data, create_volcano=False, create_ma=False)
        assert written == []


class TestBoxplotIp:
    def test_named_proteins(self, stat_data):
        written = boxplot_ip(stat_data, proteins=['GENE3', 'P00004', 'NOT_A_GENE'])
        assert written and all(os.path.exists(p) for p in written)

    def test_top_significant_by_default(self, stat_data):
        assert boxplot_ip(stat_data, top_n=4) is not None

    def test_nothing_to_plot(self, stat_data):
        assert boxplot_ip(stat_data, proteins=['NOT_A_GENE']) is None

    def test_shared_gene_symbol_keeps_proteins_apart(self, stat_data):
        stats_df = stat_data['stats_results']
        rows = stats_df.index[stats_df[PROTEIN_COL].isin(['P00003', 'P00004'])]
        stats_df.loc[rows, GENE_COL] = 'ALB'

        plot_df = _boxplot_frame(stat_data['df'], rows, stat_data['intensity_cols'])

        assert set(plot_df['Row']) == set(rows)
        assert (plot_df.groupby('Row').size() == stat_data['metadata']['n_samples']).all()
        assert boxplot_ip(stat_data, proteins=['ALB']) is not None


class TestVennIp:
    def test_three_comparisons(self, pbc_stat_data):
        result = venn_ip(pbc_stat_data)

        assert set(result['protein_sets']) == {'GALD_vs_Healthy', 'PBC_vs_Healthy', 'GALD_vs_PBC'}
        shared = result['protein_sets']['GALD_vs_Healthy'] & result['protein_sets']['GALD_vs_PBC']
        assert result['overlaps']['shared_all'] <= shared
        assert {f'P{i:05d}' for i in range(3, 7)} & shared

    def test_shared_gene_symbol_counts_each_protein(self, pbc_stat_data):
        stats_df = pbc_stat_data['stats_results']
        rows = stats_df.index[stats_df[PROTEIN_COL].isin(['P00003', 'P00004'])]
        stats_df.loc[rows, GENE_COL] = 'ALB'

        result = venn_ip(pbc_stat_data)

        assert {'P00003', 'P00004'} <= result['protein_sets']['GALD_vs_Healthy']

    def test_direction_filter(self, pbc_stat_data):
        enriched = venn_ip(pbc_stat_data, direction='enriched')
        both = venn_ip(pbc_stat_data, direction='both')

        for comparison, proteins in enriched['protein_sets'].items():
            assert proteins <= both['protein_sets'][comparison]

    def test_two_comparisons(self, pbc_stat_data):
        data = copy.copy(pbc_stat_data)
        data['stats_params'] = dict(pbc_stat_data['stats_params'],
                                    comparisons=['GALD_vs_Healthy', 'PBC_vs_Healthy'])
        result = venn_ip(data)
        assert set(result['overlaps']) == {'GALD_vs_Healthy_only', 'PBC_vs_Healthy_only', 'shared'}

    def test_single_comparison_returns_none(self, stat_data):
        assert venn_ip(stat_data) is None

    def test_invalid_direction(self, pbc_stat_data):
        with pytest.raises(ValueError):
            venn_ip(pbc_stat_data, direction='up')
