"""
Data preparation functions for the GALD IP-MS pipeline.

Handles loading the MaxQuant proteinGroups table and the experimental
design, MaxQuant flag and peptide filtering, valid-value filtering,
gene symbol assignment and contaminant removal.
"""

import os

import numpy as np
import pandas as pd

from .design import match_design_to_columns, read_design
from .utils import (
    GENE_COL,
    PROTEIN_COL,
    _all_intensity_cols,
    _create_output_dirs,
    _load_config,
    save_data,
)


def _first_entry(series):
    """First item of a ';'-separated MaxQuant list column."""
    return series.fillna('').astype(str).str.split(';').str[0].str.strip().replace('', np.nan)


def _order_conditions(design, config):
    """Control first, then treatments, then any other design conditions."""
    control = config['conditions']['control']
    treatments = config['conditions'].get('treatments', [])
    ordered = [control] + [t for t in treatments if t != control]
    extra = [c for c in design['condition'].unique() if c not in ordered]
    return ordered + extra


def _map_gene_symbols(protein_ids):
    """
    Look up gene symbols for UniProt accessions with mygene.

    Returns a dict accession -> symbol for the accessions that mapped.
    """
    import mygene

    mg = mygene.MyGeneInfo()

    cleaned_ids = {}
    for pid in protein_ids:
        clean_pid = str(pid).split('-')[0]
        clean_pid = clean_pid.split('.')[0]
        cleaned_ids[pid] = clean_pid

    unique_clean_ids = list(set(cleaned_ids.values()))
    print(f"  Querying mygene for {len(unique_clean_ids)} unique base IDs...")

    results = mg.querymany(
        unique_clean_ids,
        scopes='uniprot',
        fields='symbol',
        species='human',
        returnall=True
    )

    protein_to_gene = {}
    for result in results['out']:
        if 'symbol' in result and result['query'] not in protein_to_gene:
            protein_to_gene[result['query']] = result['symbol']

    return {
        orig_id: protein_to_gene[clean_id]
        for orig_id, clean_id in cleaned_ids.items()
        if clean_id in protein_to_gene
    }


def prep_ip(config_path):
    """
    Load and prepare GALD IP-MS data for analysis.

    This function:
    1. Loads the YAML configuration file and the design sheet
    2. Reads the MaxQuant proteinGroups.txt table
    3. Removes reverse hits, potential contaminants and site-only proteins
    4. Filters by minimum peptide count
    5. Selects, renames and groups intensity columns by condition
    6. Removes proteins quantified in too few replicates
    7. Assigns gene symbols
    8. Removes manually listed contaminants
    9. Creates output directory structure and saves a checkpoint

    Parameters
    ----------
    config_path : str
        Path to YAML configuration file.

    Returns
    -------
    dict
        Dictionary containing:
        - 'df': pd.DataFrame with cleaned protein data; intensity columns
          are named by design label and zeros are replaced by NaN
        - 'config': loaded configuration dictionary
        - 'design': experimental design table for the kept samples
        - 'intensity_cols': maps condition names to intensity column names
        - 'metadata': summary statistics about the data
        - 'output_dirs': paths to output directories

    Example
    -------
    >>> data = prep_ip('config/gald_ip_healthy.yaml')
    >>> print(f"Conditions: {list(data['intensity_cols'].keys())}")
    """

    # =========================================================================
    # 1. LOAD CONFIGURATION AND DESIGN
    # =========================================================================
    print("\n" + "="*80)
    print("STEP 1: LOADING DATA AND CONFIGURATION")
    print("="*80)

    config = _load_config(config_path)
    paths = config['data_paths']
    columns = config['data_columns']

    print(f"\n> Configuration loaded")
    print(f"  Experiment: {config['experiment']['name']}")
    print(f"  Control: {config['conditions']['control']}")
    print(f"  Treatments: {', '.join(config['conditions'].get('treatments', []))}")

    design_cfg = config['design']
    design = read_design(
        paths['design_file'],
        sheet=paths.get('design_sheet', 0),
        sample_col=design_cfg['sample_col'],
        label_col=design_cfg['label_col'],
        condition_col=design_cfg['condition_col'],
    )
    print(f"  Design sheet: {paths.get('design_sheet', 0)} ({len(design)} samples)")

    # =========================================================================
    # 2. LOAD PROTEINGROUPS TABLE
    # =========================================================================
    print(f"\n[1/7] Loading MaxQuant proteinGroups table...")

    input_file = paths['input_file']
    if not os.path.exists(input_file):
        raise FileNotFoundError(f"proteinGroups file not found: {input_file}")

    df = pd.read_csv(input_file, sep='\t', low_memory=False)

    initial_protein_count = len(df)
    filter_counts = {'loaded': initial_protein_count}
    print(f"  > Loaded {df.shape[0]} protein groups, {df.shape[1]} columns")

    # =========================================================================
    # 3. MAXQUANT FLAG FILTERS
    # =========================================================================
    print(f"\n[2/7] Removing MaxQuant-flagged protein groups...")

    for flag in config['qc_parameters']['remove_flags']:
        if flag in df.columns:
            before = len(df)
            df = df[df[flag].fillna('').astype(str).str.strip() != '+'].copy()
            print(f"  > Removed {before - len(df)} '{flag}' protein groups")
        else:
            print(f"  Warning: Column '{flag}' not found, skipping")

    filter_counts['flags'] = len(df)
    print(f"    Remaining: {len(df)} proteins")

    # =========================================================================
    # 4. FILTER BY MINIMUM PEPTIDES
    # =========================================================================
    print(f"\n[3/7] Filtering by minimum peptides...")

    peptide_col = columns['peptides']
    min_peptides = config['qc_parameters']['min_peptides']

    if peptide_col in df.columns:
        before = len(df)
        peptides = pd.to_numeric(df[peptide_col], errors='coerce')
        df = df[peptides >= min_peptides].copy()
        print(f"  > Removed {before - len(df)} proteins with < {min_peptides} peptides")
        print(f"    Remaining: {len(df)} proteins")
    else:
        print(f"  Warning: Column '{peptide_col}' not found, skipping peptide filter")

    filter_counts['peptides'] = len(df)

    # =========================================================================
    # 5. IDENTIFY INTENSITY COLUMNS
    # =========================================================================
    print(f"\n[4/7] Identifying intensity columns...")

    prefix = columns['intensity_prefix']
    column_to_label = match_design_to_columns(design, df.columns, prefix)

    unused = [c for c in df.columns if c.startswith(prefix) and c not in column_to_label]
    if unused:
        df = df.drop(columns=unused)
        print(f"  > Dropped {len(unused)} intensity columns not in the design sheet")

    df = df.rename(columns=column_to_label)
    labels = list(column_to_label.values())
    df[labels] = df[labels].apply(pd.to_numeric, errors='coerce').replace(0, np.nan)

    intensity_cols = {}
    for condition in _order_conditions(design, config):
        cols = design.loc[design['condition'] == condition, 'label'].tolist()
        if not cols:
            raise ValueError(f"Condition '{condition}' has no samples in the design sheet")
        intensity_cols[condition] = cols
        print(f"  {condition}: {len(cols)} replicates")

    all_intensity_cols = _all_intensity_cols(intensity_cols)
    print(f"  > Total intensity columns: {len(all_intensity_cols)}")

    # =========================================================================
    # 6. FILTER BY VALID VALUES
    # =========================================================================
    print(f"\n[5/7] Filtering proteins by valid values per condition...")

    before = len(df)
    min_fraction = config['qc_parameters']['min_valid_fraction']
    keep_protein = pd.Series(False, index=df.index)

    for condition, cols in intensity_cols.items():
        n_replicates = len(cols)
        min_required = max(1, int(np.ceil(n_replicates * min_fraction)))

        valid_count = df[cols].notna().sum(axis=1)
        passes_threshold = valid_count >= min_required
        keep_protein = keep_protein | passes_threshold

        print(f"  {condition}: {passes_threshold.sum()} proteins have >={min_required}/{n_replicates} valid values")

    df = df[keep_protein].copy()
    filter_counts['valid_values'] = len(df)

    print(f"\n  > Removed {before - len(df)} proteins")
    print(f"    Remaining: {len(df)} proteins")
    print(f"    (Kept proteins present in >={min_fraction:.0%} of replicates in at least one condition)")

    # =========================================================================
    # 7. ADD GENE SYMBOLS
    # =========================================================================
    print(f"\n[6/7] Assigning gene symbols...")

    protein_col = columns['protein_id']
    gene_col = columns['gene_symbol']

    if protein_col not in df.columns:
        raise ValueError(f"Protein ID column '{protein_col}' not found in {input_file}")

    df[PROTEIN_COL] = _first_entry(df[protein_col])

    if gene_col in df.columns and df[gene_col].notna().any():
        df[GENE_COL] = _first_entry(df[gene_col])
        print(f"  > {df[GENE_COL].notna().sum()} proteins have gene symbols")
    else:
        print(f"\n  Gene symbols missing - mapping from protein IDs using mygene...")
        try:
            mapping = _map_gene_symbols(df[PROTEIN_COL].dropna().unique().tolist())
            df[GENE_COL] = df[PROTEIN_COL].map(mapping)
            print(f"  > Mapped {len(mapping)} proteins to gene symbols")
        except Exception as e:
            print(f"  Warning: Could not map gene symbols: {e}")
            df[GENE_COL] = np.nan

    still_unmapped = df[GENE_COL].isna().sum()
    if still_unmapped > 0:
        df[GENE_COL] = df[GENE_COL].fillna(df[PROTEIN_COL])
        print(f"  Warning: {still_unmapped} proteins kept protein ID as identifier")

    # =========================================================================
    # 8. REMOVE MANUAL CONTAMINANTS
    # =========================================================================
    print(f"\n[7/7] Removing manual contaminants...")

    manual_contaminants = config['manual_contaminants']

    if len(manual_contaminants) > 0:
        search = df[PROTEIN_COL].fillna('') + ' ' + df[GENE_COL].fillna('')
        names_col = columns.get('protein_names')
        if names_col and names_col in df.columns:
            search = search + ' ' + df[names_col].fillna('').astype(str)

        before = len(df)
        remove_mask = pd.Series(False, index=df.index)

        for contaminant in manual_contaminants:
            mask = search.str.contains(contaminant, case=False, regex=False)
            if mask.sum() > 0:
                print(f"    Found {mask.sum()} proteins matching '{contaminant}'")
            remove_mask = remove_mask | mask

        df = df[~remove_mask].copy()

        print(f"\n  > Removed {before - len(df)} manual contaminant proteins")
        print(f"    Remaining: {len(df)} proteins")
    else:
        print(f"  No manual contaminants specified, skipping")

    filter_counts['contaminants'] = len(df)
    df = df.reset_index(drop=True)

    # =========================================================================
    # 9. SAVE FILTERED DATA AND CREATE OUTPUT DIRECTORIES
    # =========================================================================
    output_dir = paths['output_dir']
    output_dirs = _create_output_dirs(output_dir)

    summary_cols = [PROTEIN_COL, GENE_COL, protein_col, peptide_col] + all_intensity_cols
    summary_cols = list(dict.fromkeys(c for c in summary_cols if c in df.columns))
    csv_path = os.path.join(output_dirs['tables'], 'filtered_proteins_after_prep.csv')
    df[summary_cols].to_csv(csv_path, index=False)

    print(f"\n> Saved: filtered_proteins_after_prep.csv")
    print(f"  {len(df)} proteins x {len(summary_cols)} columns")

    print(f"\nData quality summary...")
    for condition, cols in intensity_cols.items():
        total_values = len(df) * len(cols)
        missing = df[cols].isna().sum().sum()
        pct_missing = (missing / total_values) * 100 if total_values else 0.0
        detected = (df[cols].notna().any(axis=1)).sum()
        print(f"  {condition}: {pct_missing:.1f}% missing, {detected} proteins detected")

    design = design[design['label'].isin(all_intensity_cols)].reset_index(drop=True)

    metadata = {
        'n_proteins': len(df),
        'n_samples': len(all_intensity_cols),
        'n_conditions': len(intensity_cols),
        'proteins_removed': initial_protein_count - len(df),
        'filter_counts': filter_counts,
        'conditions': list(intensity_cols.keys()),
        'replicates_per_condition': {k: len(v) for k, v in intensity_cols.items()}
    }

    print("\n" + "="*80)
    print("DATA PREPARATION COMPLETE")
    print("="*80)
    print(f"\nInitial proteins:        {initial_protein_count}")
    print(f"Final proteins:          {len(df)}")
    print(f"Proteins removed:        {metadata['proteins_removed']}")
    print(f"\nConditions analyzed:     {', '.join(metadata['conditions'])}")
    print(f"Total samples:           {metadata['n_samples']}")
    print("\n" + "="*80 + "\n")

    return_data = {
        'df': df,
        'config': config,
        'design': design,
        'intensity_cols': intensity_cols,
        'metadata': metadata,
        'output_dirs': output_dirs
    }

    # Auto-save for sequential workflow
    save_path = os.path.join(output_dir, 'data_after_prep.pkl')
    save_data(return_data, save_path)

    return return_data
