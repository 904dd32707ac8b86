"""
GALD IP-MS Analysis
===================

Differential abundance analysis of plasma immunoprecipitation mass
spectrometry data (MaxQuant proteinGroups.txt) comparing GALD, healthy
and PBC samples.

Main Functions
--------------
prep_ip()       - Load proteinGroups.txt and the design sheet, apply filters
qc_ip()         - Generate quality control plots
pca_ip()        - Principal component analysis of samples
drop_samples()  - Remove problematic samples after QC
norm_ip()       - Log2 transform, quantile/median normalize, impute
stat_ip()       - Moderated t-statistics (limma) or t-tests per comparison
viz_ip()        - Volcano plots, MA plots and heatmaps
boxplot_ip()    - Boxplots of selected protein intensities
venn_ip()       - Venn diagrams of significant protein overlap
export_ip()     - Excel results workbook
summary_ip()    - Plain-text analysis report
run_ip()        - All of the above for one config file
save_data()     - Save analysis data for later
load_data()     - Load saved analysis data

Example Workflow
----------------
>>> from gald_ipms import prep_ip, qc_ip, norm_ip, stat_ip, viz_ip, export_ip
>>>
>>> data = prep_ip('config/gald_ip_healthy.yaml')
>>> qc_ip(data)
>>> data = norm_ip(data, method='quantile')
>>> data = stat_ip(data)
>>> viz_ip(data)
>>> export_ip(data)
"""

from .prep import prep_ip
from .qc import qc_ip, pca_ip, drop_samples
from .normalization import norm_ip
from .statistics import stat_ip
from .visualization import viz_ip, boxplot_ip, venn_ip
from .export import export_ip, summary_ip
from .pipeline import run_ip
from .utils import save_data, load_data


__version__ = "0.1.0"

__all__ = [
    'prep_ip',
    'qc_ip',
    'pca_ip',
    'drop_samples',
    'norm_ip',
    'stat_ip',
    'viz_ip',
    'boxplot_ip',
    'venn_ip',
    'export_ip',
    'summary_ip',
    'run_ip',
    'save_data',
    'load_data',
]
