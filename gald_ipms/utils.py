"""
Utility functions for the GALD IP-MS pipeline.

Internal helpers for configuration loading, directory management,
figure saving and data serialization.
"""

import os
import pickle

import matplotlib.pyplot as plt
import yaml

# Canonical identifier columns added by prep_ip()
PROTEIN_COL = 'Protein'
GENE_COL = 'Gene'

_DEFAULTS = {
    'data_columns': {
        'protein_id': 'Majority protein IDs',
        'gene_symbol': 'Gene names',
        'protein_names': 'Protein names',
        'peptides': 'Razor + unique peptides',
        'intensity_prefix': 'LFQ intensity ',
    },
    'design': {
        'sample_col': 'sample',
        'label_col': 'label',
        'condition_col': 'condition',
    },
    'qc_parameters': {
        'min_peptides': 2,
        'min_valid_fraction': 0.5,
        'remove_flags': ['Reverse', 'Potential contaminant', 'Only identified by site'],
    },
    'normalization': {
        'method': 'quantile',
        'imputation': 'none',
    },
    'statistics': {
        'method': 'limma',
        'p_threshold': 0.05,
        'log2fc_threshold': 1.0,
        'correction': 'fdr_bh',
    },
    'plots': {
        'formats': ['pdf', 'png'],
        'label_top_n': 20,
    },
}


# Consistent color palette for an arbitrary number of conditions
_PALETTE = [
    '#1f77b4', '#d62728', '#2ca02c', '#ff7f0e', '#9467bd',
    '#8c564b', '#e377c2', '#7f7f7f', '#bcbd22', '#17becf',
]


def _condition_color_map(intensity_cols):
    """Build a color map for an arbitrary number of conditions."""
    conditions = list(intensity_cols.keys())
    return {cond: _PALETTE[i % len(_PALETTE)] for i, cond in enumerate(conditions)}


def _load_config(config_path):
    """Load YAML config file and fill in defaults for optional sections."""
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    for section, defaults in _DEFAULTS.items():
        merged = dict(defaults)
        merged.update(config.get(section) or {})
        config[section] = merged

    config.setdefault('manual_contaminants', [])
    return config


def _all_intensity_cols(intensity_cols):
    """Flatten the condition -> columns mapping, keeping condition order."""
    all_cols = []
    for cols in intensity_cols.values():
        all_cols.extend(cols)
    return all_cols


def _comparisons(config, conditions=None):
    """Return the list of (numerator, denominator) comparisons to test."""
    control = config['conditions']['control']
    pairs = config['conditions'].get('comparisons')

    if pairs:
        comparisons = [tuple(p) for p in pairs]
    else:
        comparisons = [(t, control) for t in config['conditions']['treatments']]

    if conditions is not None:
        for numerator, denominator in comparisons:
            for cond in (numerator, denominator):
                if cond not in conditions:
                    raise ValueError(
                        f"Comparison {numerator}_vs_{denominator} uses unknown condition "
                        f"'{cond}' (available: {', '.join(conditions)})"
                    )

    return comparisons


def _create_output_dirs(base_dir):
    """Create organized output directory structure."""
    dirs = {
        'base': base_dir,
        'figures': f"{base_dir}/figures",
        'qc': f"{base_dir}/figures/qc",
        'viz': f"{base_dir}/figures/viz",
        'tables': f"{base_dir}/tables"
    }

    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)

    return dirs


def _save_figure(fig, base_path, formats=('pdf',)):
    """Save a figure once per requested format and close it.

    ``base_path`` is the output path without extension. Returns the list
    of written file paths.
    """
    written = []
    for fmt in formats:
        path = f"{base_path}.{fmt}"
        fig.savefig(path, dpi=300, bbox_inches='tight')
        written.append(path)
    plt.close(fig)
    return written


def save_data(data, filename=None):
    """
    Save analysis data to pickle file for sequential workflow.

    Parameters
    ----------
    data : dict
        Analysis data dictionary (output from prep_ip, norm_ip, etc.)
    filename : str, optional
        Custom filename. If None, uses default based on output_dir in config.

    Returns
    -------
    str
        Path where data was saved.

    Example
    -------
    >>> data = prep_ip('config/gald_ip_healthy.yaml')
    >>> save_data(data)  # Saves to <output_dir>/data_checkpoint.pkl
    """
    if filename is None:
        output_dir = data['config']['data_paths']['output_dir']
        os.makedirs(output_dir, exist_ok=True)
        filename = os.path.join(output_dir, 'data_checkpoint.pkl')

    with open(filename, 'wb') as f:
        pickle.dump(data, f)

    size_mb = os.path.getsize(filename) / (1024 * 1024)

    print(f"\n{'='*80}")
    print(f"DATA SAVED")
    print(f"{'='*80}")
    print(f"Location: {filename}")
    print(f"Size: {size_mb:.1f} MB")
    print(f"\nTo load this data later:")
    print(f"  from gald_ipms import load_data")
    print(f"  data = load_data('{filename}')")
    print(f"{'='*80}\n")

    return filename


def load_data(filepath):
    """
    Load analysis data from pickle file.

    Parameters
    ----------
    filepath : str
        Path to saved pickle file.

    Returns
    -------
    dict
        Analysis data dictionary.
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    print(f"\n{'='*80}")
    print(f"LOADING DATA")
    print(f"{'='*80}")

    with open(filepath, 'rb') as f:
        data = pickle.load(f)

    size_mb = os.path.getsize(filepath) / (1024 * 1024)

    print(f"Location: {filepath}")
    print(f"Size: {size_mb:.1f} MB")

    if 'metadata' in data:
        print(f"\nData contains:")
        print(f"  Proteins: {data['metadata']['n_proteins']}")
        print(f"  Samples: {data['metadata']['n_samples']}")
        print(f"  Conditions: {data['metadata']['conditions']}")

    print(f"{'='*80}\n")

    return data
