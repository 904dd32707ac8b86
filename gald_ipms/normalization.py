"""
Normalization and imputation functions for the GALD IP-MS pipeline.

Intensities are log2 transformed and then quantile or median normalized
across samples. Missing values are left in place by default, since the
linear model fits each protein on its observed samples; mindet,
downshift, KNN and zero imputation are available for the t-test path.
"""

import copy
import os

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy.stats import rankdata

from .utils import _all_intensity_cols, _save_figure, save_data

NORMALIZATION_METHODS = ('quantile', 'median', 'none')
IMPUTATION_METHODS = ('none', 'mindet', 'downshift', 'knn', 'zero')


def quantile_normalize(frame):
    """
    Quantile normalize the columns of a samples-as-columns frame.

    Missing values are allowed. Each column's observed values are placed
    on a common probability grid by linear interpolation, the mean
    quantile function across columns is taken as the reference, and each
    observed value is replaced by the reference at its own quantile
    position. Tied values share the average of their target quantiles.

    Parameters
    ----------
    frame : pd.DataFrame
        Proteins x samples matrix (log scale).

    Returns
    -------
    pd.DataFrame
        Normalized matrix with the same shape, index and columns.
    """
    values = frame.to_numpy(dtype=float)
    n_rows, n_cols = values.shape
    observed = ~np.isnan(values)
    n_obs = observed.sum(axis=0)

    grid = np.linspace(0, 1, n_rows) if n_rows > 1 else np.array([0.0])
    sorted_cols = np.full((n_rows, n_cols), np.nan)

    for j in range(n_cols):
        obs = np.sort(values[observed[:, j], j])
        if n_obs[j] == n_rows:
            sorted_cols[:, j] = obs
        elif n_obs[j] > 1:
            sorted_cols[:, j] = np.interp(grid, np.linspace(0, 1, n_obs[j]), obs)
        elif n_obs[j] == 1:
            sorted_cols[:, j] = obs[0]

    reference = np.nanmean(sorted_cols, axis=1) if n_cols else np.array([])

    result = np.full_like(values, np.nan)
    for j in range(n_cols):
        mask = observed[:, j]
        if n_obs[j] == 0:
            continue
        ranks = rankdata(values[mask, j], method='average')
        if n_obs[j] == 1:
            position = np.array([0.5])
        else:
            position = (ranks - 1) / (n_obs[j] - 1)
        result[mask, j] = np.interp(position, grid, reference)

    return pd.DataFrame(result, index=frame.index, columns=frame.columns)


def median_normalize(frame):
    """Shift each sample so that all sample medians equal their mean."""
    medians = frame.median(axis=0)
    return frame - medians + medians.mean()


def impute_missing(frame, method='none', shift=1.8, width=0.3, seed=0):
    """
    Fill missing values in a log-scale proteins x samples matrix.

    Parameters
    ----------
    frame : pd.DataFrame
        Log-scale intensities.
    method : str
        'none', 'mindet' (column min - shift*sd), 'downshift' (normal draw
        centred shift*sd below the column mean with width*sd spread),
        'knn' (5 nearest proteins) or 'zero'.
    shift, width : float
        Parameters of the mindet/downshift distributions.
    seed : int
        Random seed for 'downshift'.
    """
    if method not in IMPUTATION_METHODS:
        raise ValueError(f"Unknown imputation '{method}'. Options: {', '.join(IMPUTATION_METHODS)}")

    frame = frame.copy()

    if method == 'none':
        return frame

    if method == 'zero':
        return frame.fillna(0)

    if method == 'knn':
        from sklearn.impute import KNNImputer
        imputer = KNNImputer(n_neighbors=5)
        filled = imputer.fit_transform(frame)
        return pd.DataFrame(filled, index=frame.index, columns=frame.columns)

    rng = np.random.default_rng(seed)
    for col in frame.columns:
        missing = frame[col].isna()
        if not missing.any():
            continue
        valid_values = frame[col].dropna()
        if len(valid_values) == 0:
            continue
        std_val = valid_values.std()
        if pd.isna(std_val):
            std_val = 0.0

        if method == 'mindet':
            frame.loc[missing, col] = valid_values.min() - shift * std_val
        else:
            draws = rng.normal(
                loc=valid_values.mean() - shift * std_val,
                scale=width * std_val,
                size=missing.sum()
            )
            frame.loc[missing, col] = draws

    return frame


def norm_ip(data, method='quantile', imputation='none', log_transform=True):
    """
    Log-transform, normalize and optionally impute intensity data.

    Normalization options:
    - 'quantile': Quantile normalization (default), identical distributions
    - 'median': Median centering, aligned sample medians
    - 'none': Log transformation only

    Imputation options:
    - 'none': Keep missing values (default, handled by the linear model)
    - 'mindet': Minimum detection (min - 1.8*std per sample)
    - 'downshift': Random draws from a down-shifted normal distribution
    - 'knn': K-nearest neighbors
    - 'zero': Replace with zero

    Parameters
    ----------
    data : dict
        Output from prep_ip() or drop_samples().
    method : str, optional
        Normalization method (default: 'quantile').
    imputation : str, optional
        Imputation method for missing values (default: 'none').
    log_transform : bool, optional
        Apply log2 before normalization (default: True). Set False when the
        input intensities are already on a log scale.

    Returns
    -------
    dict
        Updated data dictionary with normalized values in 'df', the
        pre-normalization intensities in 'raw_df' and parameters in
        'normalization'.

    Example
    -------
    >>> data = prep_ip('config/gald_ip_healthy.yaml')
    >>> data = norm_ip(data, method='quantile')
    """
    if method not in NORMALIZATION_METHODS:
        raise ValueError(f"Unknown normalization '{method}'. Options: {', '.join(NORMALIZATION_METHODS)}")
    if imputation not in IMPUTATION_METHODS:
        raise ValueError(f"Unknown imputation '{imputation}'. Options: {', '.join(IMPUTATION_METHODS)}")

    print("\n" + "="*80)
    print("NORMALIZATION AND IMPUTATION")
    print("="*80)

    df = data['df'].copy()
    config = data['config']
    intensity_cols = data['intensity_cols']
    all_intensity = _all_intensity_cols(intensity_cols)

    print(f"\nMethod: {'log2 + ' if log_transform else ''}{method}")
    print(f"Imputation: {imputation}")
    print(f"Processing {len(df)} proteins across {len(all_intensity)} samples")

    # =========================================================================
    # 1. LOG TRANSFORMATION
    # =========================================================================
    print(f"\n[1/3] Log transformation...")

    matrix = df[all_intensity].astype(float)
    if log_transform:
        matrix = np.log2(matrix.where(matrix > 0))
        print(f"  > Log2 transformation applied (non-positive values set to missing)")
    else:
        print(f"  Intensities used as provided (already log scale)")

    before = matrix.copy()

    # =========================================================================
    # 2. NORMALIZATION
    # =========================================================================
    print(f"\n[2/3] Applying {method} normalization...")

    if method == 'quantile':
        matrix = quantile_normalize(matrix)
        print(f"  > Quantile normalization applied")
    elif method == 'median':
        matrix = median_normalize(matrix)
        print(f"  > Median normalization applied")
    else:
        print(f"  No between-sample normalization")

    # =========================================================================
    # 3. IMPUTATION
    # =========================================================================
    print(f"\n[3/3] Applying {imputation} imputation...")

    missing_before = matrix.isna().sum().sum()
    matrix = impute_missing(matrix, method=imputation)
    missing_after = matrix.isna().sum().sum()
    print(f"    Missing values: {missing_before} -> {missing_after}")

    df[all_intensity] = matrix

    sample_medians = matrix.median(axis=0)

    print(f"\n" + "="*80)
    print("NORMALIZATION SUMMARY")
    print("="*80)
    print(f"\nSample medians after normalization:")
    print(f"  Range: {sample_medians.min():.2f} to {sample_medians.max():.2f}")
    for condition, cols in intensity_cols.items():
        values = matrix[cols].to_numpy().flatten()
        values = values[~np.isnan(values)]
        if len(values):
            print(f"  {condition}: median {np.median(values):.2f}, std {np.std(values):.2f}")

    # =========================================================================
    # 4. BEFORE/AFTER DENSITY PLOTS
    # =========================================================================
    print(f"\nCreating before/after comparison plots...")

    formats = config['plots']['formats']
    fig, axes = plt.subplots(1, 2, figsize=(14, 6))

    for ax, frame, title in [
        (axes[0], before, 'Before normalization (log2)'),
        (axes[1], matrix, f'After {method} normalization'),
    ]:
        for col in all_intensity:
            values = frame[col].dropna()
            if len(values) > 1:
                values.plot.kde(ax=ax, linewidth=1, alpha=0.7, label=col)
        ax.set_title(title, fontweight='bold')
        ax.set_xlabel('Log2 intensity', fontsize=10)
        ax.set_ylabel('Density', fontsize=10)
        ax.grid(alpha=0.3)

    axes[1].legend(fontsize=6, loc='upper right', ncol=2)

    plt.tight_layout()
    _save_figure(fig, os.path.join(data['output_dirs']['qc'], 'normalization_comparison'), formats)
    print(f"  > Saved: normalization_comparison ({', '.join(formats)})")

    # =========================================================================
    # 5. UPDATE DATA DICTIONARY
    # =========================================================================
    data_updated = copy.copy(data)
    data_updated['df'] = df
    data_updated['raw_df'] = data['df'][all_intensity].copy()
    data_updated['normalization'] = {
        'method': method,
        'imputation': imputation,
        'log_transform': log_transform,
        'sample_medians': sample_medians.to_dict(),
    }

    # Auto-save for sequential workflow
    output_path = os.path.join(config['data_paths']['output_dir'], 'data_after_norm.pkl')
    save_data(data_updated, output_path)

    print("\n" + "="*80)
    print("NORMALIZATION COMPLETE")
    print("="*80)
    print(f"\nNext step: stat_ip() for differential abundance")
    print("="*80 + "\n")

    return data_updated
