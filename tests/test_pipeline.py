"""Tests for gald_ipms.pipeline module."""

import os

from gald_ipms import run_ip


class TestRunIp:
    def test_full_run(self, sample_config):
        config_path, tmp_path = sample_config

        data = run_ip(config_path)

        output_dir = data['config']['data_paths']['output_dir']
        assert os.path.exists(data['results_file'])
        assert os.path.exists(os.path.join(output_dir, 'analysis_summary.txt'))
        assert os.path.exists(os.path.join(output_dir, 'figures', 'qc', '03_pca_plot_normalized.png'))
        assert data['significant_proteins']['GALD_vs_Healthy']['enriched'] >= 4

    def test_drop_samples_argument(self, sample_config):
        config_path, tmp_path = sample_config

        data = run_ip(config_path, samples_to_drop=['Healthy_4'])

        assert data['metadata']['samples_dropped'] == ['Healthy_4']
        assert 'Healthy_4' not in data['raw_df'].columns

    def test_three_condition_run_draws_venn(self, pbc_config):
        config_path, tmp_path = pbc_config

        data = run_ip(config_path)

        label = data['stats_params']['threshold_label']
        assert os.path.exists(os.path.join(data['output_dirs']['viz'], f'venn_both_{label}.png'))
