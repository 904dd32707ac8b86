"""Tests for gald_ipms.utils module."""

import os

import matplotlib.pyplot as plt
import pytest
import yaml

from gald_ipms.utils import (
    _comparisons,
    _create_output_dirs,
    _load_config,
    _save_figure,
    load_data,
    save_data,
)


class TestLoadConfig:
    def test_fills_defaults(self, tmp_path):
        config_path = tmp_path / 'config.yaml'
        config_path.write_text(yaml.dump({
            'experiment': {'name': 'Minimal'},
            'statistics': {'p_threshold': 0.01},
        }))

        config = _load_config(str(config_path))

        assert config['statistics']['p_threshold'] == 0.01
        assert config['statistics']['method'] == 'limma'
        assert config['normalization']['method'] == 'quantile'
        assert config['data_columns']['intensity_prefix'] == 'LFQ intensity '
        assert config['manual_contaminants'] == []

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            _load_config(str(tmp_path / 'missing.yaml'))


class TestComparisons:
    def test_treatments_vs_control(self):
        config = {'conditions': {'control': 'Healthy', 'treatments': ['GALD', 'PBC']}}
        assert _comparisons(config) == [('GALD', 'Healthy'), ('PBC', 'Healthy')]

    def test_explicit_comparisons(self):
        config = {'conditions': {'control': 'Healthy', 'treatments': ['GALD', 'PBC'],
                                 'comparisons': [['GALD', 'PBC']]}}
        assert _comparisons(config) == [('GALD', 'PBC')]

    def test_unknown_condition_raises(self):
        config = {'conditions': {'control': 'Healthy', 'treatments': ['GALD']}}
        with pytest.raises(ValueError, match='GALD'):
            _comparisons(config, conditions=['Healthy', 'PBC'])


class TestOutputDirs:
    def test_creates_structure(self, tmp_path):
        dirs = _create_output_dirs(str(tmp_path / 'out'))

        for key in ('base', 'figures', 'qc', 'viz', 'tables'):
            assert os.path.isdir(dirs[key])


class TestSaveFigure:
    def test_one_file_per_format(self, tmp_path):
        fig, ax = plt.subplots()
        ax.plot([0, 1], [0, 1])

        written = _save_figure(fig, str(tmp_path / 'plot'), formats=['pdf', 'png'])

        assert written == [str(tmp_path / 'plot.pdf'), str(tmp_path / 'plot.png')]
        assert all(os.path.exists(p) for p in written)


class TestSaveLoad:
    def test_roundtrip(self, prepped_data, tmp_path):
        path = save_data(prepped_data, filename=str(tmp_path / 'checkpoint.pkl'))
        loaded = load_data(path)

        assert loaded['intensity_cols'] == prepped_data['intensity_cols']
        assert loaded['df'].equals(prepped_data['df'])

    def test_load_missing_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_data(str(tmp_path / 'nope.pkl'))
