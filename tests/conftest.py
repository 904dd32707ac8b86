"""Shared test fixtures for GALD IP-MS pipeline tests."""

import matplotlib

matplotlib.use('Agg')

import numpy as np
import pandas as pd
import pytest
import yaml

GALD = [f'G{i}' for i in range(1, 5)]
HEALTHY = [f'H{i}' for i in range(1, 5)]
PBC = [f'P{i}' for i in range(1, 4)]

ENRICHED_ROWS = list(range(3, 9))
N_PROTEINS = 60


def _protein_groups():
    rng = np.random.default_rng(42)

    samples = GALD + HEALTHY + PBC + ['X1']
    base = rng.normal(25, 2, N_PROTEINS)
    base[ENRICHED_ROWS] = 22.0

    data = {
        'Protein IDs': [f'P{i:05d};P{i:05d}-2' for i in range(N_PROTEINS)],
        'Majority protein IDs': [f'P{i:05d}' for i in range(N_PROTEINS)],
        'Gene names': [f'GENE{i}' for i in range(N_PROTEINS)],
        'Protein names': [f'Protein {i}' for i in range(N_PROTEINS)],
        'Razor + unique peptides': rng.integers(2, 30, N_PROTEINS),
        'Reverse': [''] * N_PROTEINS,
        'Potential contaminant': [''] * N_PROTEINS,
        'Only identified by site': [''] * N_PROTEINS,
    }

    data['Majority protein IDs'][0] = 'REV__P00000'
    data['Reverse'][0] = '+'
    data['Majority protein IDs'][1] = 'CON__P00001'
    data['Potential contaminant'][1] = '+'
    data['Only identified by site'][2] = '+'

    data['Gene names'][9] = 'GENE9;GENE9B'
    data['Gene names'][50] = 'KRT10'
    data['Protein names'][50] = 'Keratin, type I cytoskeletal 10'
    data['Razor + unique peptides'][55:58] = 1

    for sample in samples:
        log_values = base + rng.normal(0, 0.3, N_PROTEINS)
        if sample in GALD:
            log_values[ENRICHED_ROWS] += 4.0
        values = 2 ** log_values

        missing = rng.random(N_PROTEINS) < 0.08
        missing[ENRICHED_ROWS] = False
        values[missing] = 0.0
        values[51] = 0.0
        data[f'LFQ intensity {sample}'] = values

    return pd.DataFrame(data)


def _design():
    rows = (
        [{'sample': s, 'label': f'GALD_{i}', 'condition': 'GALD'} for i, s in enumerate(GALD, 1)]
        + [{'sample': s, 'label': f'Healthy_{i}', 'condition': 'Healthy'} for i, s in enumerate(HEALTHY, 1)]
        + [{'sample': s, 'label': f'PBC_{i}', 'condition': 'PBC'} for i, s in enumerate(PBC, 1)]
    )
    return pd.DataFrame(rows)


def _write_config(tmp_path, name, sheet, treatments, comparisons=None):
    config = {
        'experiment': {
            'name': name,
            'description': 'Unit test experiment',
        },
        'data_paths': {
            'input_file': str(tmp_path / 'proteinGroups.txt'),
            'design_file': str(tmp_path / 'design.xlsx'),
            'design_sheet': sheet,
            'output_dir': str(tmp_path / 'results' / name),
        },
        'conditions': {
            'control': 'Healthy',
            'treatments': treatments,
        },
        'qc_parameters': {
            'min_peptides': 2,
            'min_valid_fraction': 0.5,
        },
        'manual_contaminants': ['KRT'],
        'plots': {
            'formats': ['png'],
            'label_top_n': 5,
        },
    }
    if comparisons:
        config['conditions']['comparisons'] = comparisons

    config_path = str(tmp_path / f'{name}.yaml')
    with open(config_path, 'w') as f:
        yaml.dump(config, f)
    return config_path


@pytest.fixture
def input_files(tmp_path):
    """Write a synthetic proteinGroups.txt and a two-sheet design workbook."""
    _protein_groups().to_csv(tmp_path / 'proteinGroups.txt', sep='\t', index=False)

    design = _design()
    with pd.ExcelWriter(tmp_path / 'design.xlsx', engine='openpyxl') as writer:
        design[design['condition'] != 'PBC'].to_excel(writer, sheet_name='GALD_healthy', index=False)
        design.to_excel(writer, sheet_name='GALD_PBC_healthy', index=False)

    return tmp_path


@pytest.fixture
def sample_config(input_files):
    """Config for the GALD vs healthy analysis."""
    tmp_path = input_files
    config_path = _write_config(tmp_path, 'Test_GALD_healthy', 'GALD_healthy', ['GALD'])
    return config_path, tmp_path


@pytest.fixture
def pbc_config(input_files):
    """Config for the three-condition analysis with explicit comparisons."""
    tmp_path = input_files
    config_path = _write_config(
        tmp_path, 'Test_GALD_PBC', 'GALD_PBC_healthy', ['GALD', 'PBC'],
        comparisons=[['GALD', 'Healthy'], ['PBC', 'Healthy'], ['GALD', 'PBC']],
    )
    return config_path, tmp_path


@pytest.fixture
def prepped_data(sample_config):
    """Run prep_ip and return the result for downstream tests."""
    from gald_ipms import prep_ip

    config_path, tmp_path = sample_config
    return prep_ip(config_path)


@pytest.fixture
def normed_data(prepped_data):
    """Quantile-normalized data ready for statistical testing."""
    from gald_ipms import norm_ip

    return norm_ip(prepped_data, method='quantile')


@pytest.fixture
def stat_data(normed_data):
    """Moderated t results for GALD vs healthy."""
    from gald_ipms import stat_ip

    return stat_ip(normed_data)


@pytest.fixture
def pbc_stat_data(pbc_config):
    """Moderated t results for the three-condition analysis."""
    from gald_ipms import norm_ip, prep_ip, stat_ip

    config_path, tmp_path = pbc_config
    return stat_ip(norm_ip(prep_ip(config_path)))
