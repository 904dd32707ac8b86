"""
Experimental design handling for the GALD IP-MS pipeline.

Each sheet of the design workbook describes one IP experiment: which
MaxQuant sample belongs to which condition and how it should be labelled.
"""

import os

import pandas as pd


def read_design(path, sheet=0, sample_col='sample', label_col='label',
                condition_col='condition'):
    """
    Read one sheet of the experimental design workbook.

    Parameters
    ----------
    path : str
        Path to the Excel workbook.
    sheet : str or int, optional
        Sheet name or index (default: first sheet).
    sample_col, label_col, condition_col : str, optional
        Column names holding the MaxQuant sample name, the display label
        and the condition.

    Returns
    -------
    pd.DataFrame
        Design table with columns 'sample', 'label', 'condition' (plus any
        extra columns from the sheet), one row per sample.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Design workbook not found: {path}")

    design = pd.read_excel(path, sheet_name=sheet)
    design.columns = [str(c).strip() for c in design.columns]

    missing = [c for c in (sample_col, condition_col) if c not in design.columns]
    if missing:
        raise ValueError(
            f"Design sheet '{sheet}' is missing required column(s): {', '.join(missing)}"
        )

    design = design.rename(columns={
        sample_col: 'sample',
        label_col: 'label',
        condition_col: 'condition',
    })

    design = design[design['sample'].notna()].copy()
    design['sample'] = design['sample'].astype(str).str.strip()
    design = design[design['sample'] != ''].copy()

    if 'label' not in design.columns:
        design['label'] = design['sample']
    design['label'] = design['label'].fillna(design['sample']).astype(str).str.strip()
    design['condition'] = design['condition'].astype(str).str.strip()

    for col in ('sample', 'label'):
        dupes = design[col][design[col].duplicated()].unique().tolist()
        if dupes:
            raise ValueError(f"Duplicate {col} entries in design sheet '{sheet}': {dupes}")

    return design.reset_index(drop=True)


def match_design_to_columns(design, columns, prefix):
    """
    Map each design sample to its intensity column.

    Parameters
    ----------
    design : pd.DataFrame
        Output from read_design().
    columns : iterable of str
        Column names of the proteinGroups table.
    prefix : str
        Intensity column prefix, e.g. 'LFQ intensity '.

    Returns
    -------
    dict
        Maps intensity column name -> design label.
    """
    columns = set(columns)
    mapping = {}
    unmatched = []

    for _, row in design.iterrows():
        col = f"{prefix}{row['sample']}"
        if col in columns:
            mapping[col] = row['label']
        else:
            unmatched.append(row['sample'])

    if unmatched:
        raise ValueError(
            f"No '{prefix}<sample>' column for design sample(s): {', '.join(unmatched)}"
        )

    return mapping
