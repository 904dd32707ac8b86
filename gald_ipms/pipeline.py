"""
End-to-end run of the GALD IP-MS analysis for one configuration file.
"""

from .export import export_ip, summary_ip
from .normalization import norm_ip
from .prep import prep_ip
from .qc import drop_samples, qc_ip
from .statistics import stat_ip
from .visualization import boxplot_ip, venn_ip, viz_ip


def run_ip(config_path, samples_to_drop=None):
    """
    Run every analysis step with the settings from the config file.

    prep -> QC -> (drop samples) -> normalize -> QC (normalized) ->
    differential abundance -> plots -> Excel export -> summary report.

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.
    samples_to_drop : list or dict, optional
        Samples to exclude after the first QC pass; overrides the
        config's 'qc_parameters.drop_samples'.

    Returns
    -------
    dict
        Final analysis data dictionary (output of stat_ip) with the
        workbook path under 'results_file'.

    Example
    -------
    >>> data = run_ip('config/gald_ip_healthy.yaml')
    """
    data = prep_ip(config_path)
    config = data['config']

    qc_ip(data)

    if samples_to_drop is None:
        samples_to_drop = config['qc_parameters'].get('drop_samples')
    if samples_to_drop:
        data = drop_samples(data, samples_to_drop)

    norm_cfg = config['normalization']
    data = norm_ip(data, method=norm_cfg['method'], imputation=norm_cfg['imputation'])
    qc_ip(data, output_suffix='_normalized')

    stat_cfg = config['statistics']
    data = stat_ip(
        data,
        p_threshold=stat_cfg['p_threshold'],
        log2fc_threshold=stat_cfg['log2fc_threshold'],
        correction=stat_cfg['correction'],
        method=stat_cfg['method'],
    )

    viz_ip(data)
    boxplot_ip(data, proteins=config['plots'].get('boxplot_proteins'))
    if len(data['stats_params']['comparisons']) in (2, 3):
        venn_ip(data)

    data['results_file'] = export_ip(data)
    summary_ip(data)

    return data
