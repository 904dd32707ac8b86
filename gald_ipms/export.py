"""
Result export for the GALD IP-MS pipeline.

Writes the Excel results workbook and a plain-text run summary.
"""

import os
from datetime import datetime

import pandas as pd

from .utils import GENE_COL, PROTEIN_COL, _all_intensity_cols

# Excel limits sheet names to 31 characters
_MAX_SHEET_NAME = 31


def _sheet_name(name, used):
    """Excel-safe, unique sheet name."""
    cleaned = ''.join('_' if ch in '[]:*?/\\' else ch for ch in name)[:_MAX_SHEET_NAME]
    candidate = cleaned
    i = 2
    while candidate in used:
        suffix = f"_{i}"
        candidate = cleaned[:_MAX_SHEET_NAME - len(suffix)] + suffix
        i += 1
    used.add(candidate)
    return candidate


def _comparison_table(stats_results, comparison):
    """One comparison's results with unprefixed column names, sorted by p-value."""
    prefix = f'{comparison}_'
    prefixes = tuple(f'{name}_' for name in _comparison_names(stats_results))
    info_cols = [c for c in stats_results.columns if not c.startswith(prefixes)]
    stat_cols = [c for c in stats_results.columns if c.startswith(prefix)]

    table = stats_results[info_cols + stat_cols].rename(
        columns={c: c[len(prefix):] for c in stat_cols}
    )
    return table.sort_values('pvalue', na_position='last')


def _comparison_names(stats_results):
    return [c[:-len('_significant')] for c in stats_results.columns if c.endswith('_significant')]


def _parameters_table(data):
    config = data['config']
    stats_params = data['stats_params']
    normalization = data.get('normalization', {})

    rows = [
        ('Experiment', config['experiment']['name']),
        ('Input file', config['data_paths']['input_file']),
        ('Design file', config['data_paths']['design_file']),
        ('Design sheet', config['data_paths'].get('design_sheet', 0)),
        ('Intensity prefix', config['data_columns']['intensity_prefix']),
        ('Min peptides', config['qc_parameters']['min_peptides']),
        ('Min valid fraction', config['qc_parameters']['min_valid_fraction']),
        ('Removed flags', ', '.join(config['qc_parameters']['remove_flags'])),
        ('Manual contaminants', ', '.join(config['manual_contaminants'])),
        ('Samples dropped', ', '.join(data['metadata'].get('samples_dropped', []))),
        ('Log2 transform', normalization.get('log_transform')),
        ('Normalization', normalization.get('method')),
        ('Imputation', normalization.get('imputation')),
        ('Test', stats_params['method']),
        ('P threshold (adjusted)', stats_params['p_threshold']),
        ('Log2FC threshold', stats_params['log2fc_threshold']),
        ('Correction', stats_params['correction']),
    ]
    prior = stats_params.get('prior')
    if prior:
        rows.append(('Prior df', prior['df_prior']))
        rows.append(('Prior variance', prior['s2_prior']))
    for step, count in data['metadata'].get('filter_counts', {}).items():
        rows.append((f'Proteins after {step}', count))
    rows.append(('Exported', datetime.now().strftime('%Y-%m-%d %H:%M')))

    return pd.DataFrame(rows, columns=['Parameter', 'Value'])


def export_ip(data, filename=None):
    """
    Export analysis results to an Excel workbook.

    Sheets:
    - Summary: significant protein counts per comparison
    - Parameters: filters, normalization and test settings
    - Design: experimental design of the analysed samples
    - One sheet per comparison, sorted by p-value
    - All proteins: statistics for every comparison plus normalized intensities
    - Raw intensities: intensities before log transformation/normalization

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    filename : str, optional
        Output path (default: <output_dir>/<experiment name>_results.xlsx).

    Returns
    -------
    str
        Path of the written workbook.

    Example
    -------
    >>> data = stat_ip(data)
    >>> export_ip(data)
    """

    print("\n" + "="*80)
    print("EXPORTING RESULTS WORKBOOK")
    print("="*80)

    config = data['config']
    stats_results = data['stats_results']
    all_intensity = _all_intensity_cols(data['intensity_cols'])

    if filename is None:
        name = config['experiment']['name'].replace(' ', '_')
        filename = os.path.join(config['data_paths']['output_dir'], f'{name}_results.xlsx')

    used = set()
    with pd.ExcelWriter(filename, engine='openpyxl') as writer:
        data['stats_summary'].to_excel(writer, sheet_name=_sheet_name('Summary', used), index=False)
        _parameters_table(data).to_excel(writer, sheet_name=_sheet_name('Parameters', used), index=False)
        data['design'].to_excel(writer, sheet_name=_sheet_name('Design', used), index=False)

        for comparison in data['stats_params']['comparisons']:
            sheet = _sheet_name(comparison, used)
            _comparison_table(stats_results, comparison).to_excel(writer, sheet_name=sheet, index=False)
            print(f"  > Sheet '{sheet}'")

        normalized = data['df'][all_intensity].add_prefix('norm_')
        pd.concat([stats_results, normalized], axis=1).to_excel(
            writer, sheet_name=_sheet_name('All proteins', used), index=False
        )

        if 'raw_df' in data:
            raw = pd.concat([stats_results[[PROTEIN_COL, GENE_COL]], data['raw_df'][all_intensity]], axis=1)
            raw.to_excel(writer, sheet_name=_sheet_name('Raw intensities', used), index=False)

    print(f"\n  > Saved: {filename}")
    print(f"    Sheets: {', '.join(sorted(used))}")
    print("="*80 + "\n")

    return filename


def summary_ip(data, filename=None):
    """
    Write a plain-text summary report of the analysis.

    Parameters
    ----------
    data : dict
        Output from stat_ip().
    filename : str, optional
        Output path (default: <output_dir>/analysis_summary.txt).

    Returns
    -------
    str
        Path of the written report.
    """
    config = data['config']
    metadata = data['metadata']
    stats_params = data['stats_params']

    if filename is None:
        filename = os.path.join(config['data_paths']['output_dir'], 'analysis_summary.txt')

    lines = [
        "="*80,
        f"ANALYSIS SUMMARY: {config['experiment']['name']}",
        "="*80,
        "",
        config['experiment'].get('description', '') or '',
        "",
        "Samples",
        "-------",
    ]
    for condition, n_reps in metadata['replicates_per_condition'].items():
        lines.append(f"  {condition}: {n_reps} replicates")
    if metadata.get('samples_dropped'):
        lines.append(f"  Dropped: {', '.join(metadata['samples_dropped'])}")

    lines += ["", "Protein filtering", "-----------------"]
    for step, count in metadata.get('filter_counts', {}).items():
        lines.append(f"  {step:<15} {count}")

    normalization = data.get('normalization', {})
    lines += [
        "",
        "Processing",
        "----------",
        f"  Normalization: {normalization.get('method')}",
        f"  Imputation:    {normalization.get('imputation')}",
        f"  Test:          {stats_params['method']}",
        f"  Thresholds:    adj. p < {stats_params['p_threshold']}, "
        f"|log2FC| > {stats_params['log2fc_threshold']} ({stats_params['correction']})",
    ]
    if stats_params.get('prior'):
        prior = stats_params['prior']
        lines.append(f"  Prior:         df {prior['df_prior']:.2f}, variance {prior['s2_prior']:.4f}")

    lines += ["", "Results", "-------"]
    for comparison, stats in data['significant_proteins'].items():
        lines.append(
            f"  {comparison}: {stats['total']} significant of {stats['tested']} tested "
            f"({stats['enriched']} enriched, {stats['depleted']} depleted)"
        )

    with open(filename, 'w') as f:
        f.write('\n'.join(lines) + '\n')

    print(f"  > Saved: {os.path.basename(filename)}")

    return filename
