"""
Data Loader Module
==================

Handles CSV ingestion, schema typing, and configuration loading.

Functions:
    - load_config: Load YAML configuration file
    - load_loans: Load the loans CSV and type its columns, skipping malformed rows
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Tuple

import pandas as pd
import numpy as np
import yaml

from .exceptions import ParseError, SchemaMismatchError

logger = logging.getLogger(__name__)

INTEGER_COLUMNS = ['id', 'lender_count']
FLOAT_COLUMNS = ['loan_amount', 'funded_amount', 'term_in_months']
DATE_COLUMNS = ['date']
TEXT_COLUMNS = ['country', 'borrower_genders', 'use', 'tags']

REQUIRED_COLUMNS = [
    'id', 'country', 'loan_amount', 'funded_amount', 'term_in_months',
    'lender_count', 'date', 'borrower_genders', 'use', 'tags'
]


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _present(raw: pd.Series) -> pd.Series:
    """Mask of cells that hold a non-blank value."""
    return raw.notna() & (raw.astype(str).str.strip() != "")


def _coerce_numeric(raw: pd.Series, integer: bool) -> Tuple[pd.Series, pd.Series]:
    """
    Parse a text column as numbers.

    Returns:
        Tuple of (parsed values, mask of rows whose value is malformed)
    """
    present = _present(raw)
    values = pd.to_numeric(raw.where(present).str.strip(), errors='coerce')
    bad = present & values.isna()

    if integer:
        # Counts and identifiers must be whole, non-negative numbers
        bad |= values.notna() & ((values % 1 != 0) | (values < 0))

    return values, bad


def _coerce_dates(raw: pd.Series) -> Tuple[pd.Series, pd.Series]:
    """
    Parse a text column as calendar dates.

    Values carrying a UTC offset are converted to UTC and stored naive, so
    offset and plain dates can share one column.
    """
    present = _present(raw)
    values = pd.to_datetime(
        raw.where(present).str.strip(), errors='coerce', format='mixed', utc=True
    ).dt.tz_localize(None)
    bad = present & values.isna()
    return values, bad


def load_loans(
    file_path: str,
    required_columns: Sequence[str] = REQUIRED_COLUMNS,
    strict: bool = False
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Load the loans CSV and type its columns by the fixed schema.

    Rows whose numeric or date fields are malformed, or whose id is empty,
    are skipped and counted. Blank values in other columns are kept as
    missing.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present in the header
        strict: If True, raise on the first malformed row instead of skipping

    Returns:
        Tuple of (typed DataFrame, load report)

    Raises:
        FileNotFoundError: If data file doesn't exist
        SchemaMismatchError: If a required column is absent
        ParseError: If strict and a row is malformed
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    typed_columns = INTEGER_COLUMNS + FLOAT_COLUMNS + DATE_COLUMNS + TEXT_COLUMNS
    raw = pd.read_csv(
        file_path,
        dtype={col: str for col in typed_columns}
    )
    logger.info(f"Loaded data from {file_path}: {raw.shape[0]} rows × {raw.shape[1]} columns")

    missing = [col for col in required_columns if col not in raw.columns]
    if missing:
        raise SchemaMismatchError(missing, context=str(file_path))

    df = raw.copy()
    bad_rows = pd.Series(False, index=raw.index)
    skipped_by_column: Dict[str, int] = {}

    for col in typed_columns:
        if col not in raw.columns or col in TEXT_COLUMNS:
            continue

        if col in DATE_COLUMNS:
            values, bad = _coerce_dates(raw[col])
        else:
            values, bad = _coerce_numeric(raw[col], integer=col in INTEGER_COLUMNS)

        if col == 'id':
            bad |= values.isna()

        if bad.any():
            if strict:
                first = bad.idxmax()
                # +2 accounts for the header line and 1-based numbering
                raise ParseError(col, raw.at[first, col], int(first) + 2)
            skipped_by_column[col] = int(bad.sum())

        df[col] = values
        bad_rows |= bad

    df = df.loc[~bad_rows].reset_index(drop=True)

    if 'id' in df.columns:
        df['id'] = df['id'].astype('int64')
    for col in INTEGER_COLUMNS:
        if col != 'id' and col in df.columns:
            df[col] = df[col].astype('Int64')
    for col in FLOAT_COLUMNS:
        if col in df.columns:
            df[col] = df[col].astype('float64')

    report = {
        'rows_read': int(len(raw)),
        'rows_loaded': int(len(df)),
        'skipped_rows': int(bad_rows.sum()),
        'skipped_by_column': skipped_by_column
    }

    if report['skipped_rows'] > 0:
        logger.warning(
            f"Skipped {report['skipped_rows']} malformed rows: {skipped_by_column}"
        )

    return df, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the loans table.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "missing": df.isnull().sum().astype(int).to_dict(),
        "statistics": {}
    }

    if 'country' in df.columns:
        summary["n_countries"] = int(df['country'].nunique())
    if 'date' in df.columns and df['date'].notna().any():
        summary["date_range"] = (
            df['date'].min().date().isoformat(),
            df['date'].max().date().isoformat()
        )

    for col in df.select_dtypes(include=[np.number]).columns:
        values = df[col].astype('float64')
        summary["statistics"][col] = {
            "count": int(values.count()),
            "mean": float(values.mean()),
            "std": float(values.std()),
            "min": float(values.min()),
            "50%": float(values.quantile(0.50)),
            "max": float(values.max())
        }

    return summary


def print_data_summary(df: pd.DataFrame, report: Optional[Dict[str, Any]] = None) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
        report: Optional load report from load_loans
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")

    if report is not None:
        print(f"Rows read: {report['rows_read']} | skipped as malformed: {report['skipped_rows']}")

    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {df[col].dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    numeric: List[str] = df.select_dtypes(include=[np.number]).columns.tolist()
    if numeric:
        print("\nBasic Statistics:")
        print("-" * 40)
        print(df[numeric].astype('float64').describe().round(2).to_string())
    print("=" * 60 + "\n")
