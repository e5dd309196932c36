"""
Data Cleaning Module
====================

Turns the raw loans table into the cleaned table used for analysis.

Functions:
    - count_borrower_genders: Derive female/male borrower counts from the label text
    - clean_loans: Drop low-value columns, add gender counts, order by id
"""

import logging
from typing import List

import pandas as pd

from .exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)

DROPPED_COLUMNS = ['use', 'tags', 'funded_amount', 'borrower_genders']
CLEANER_INPUT_COLUMNS = ['id'] + DROPPED_COLUMNS

FEMALE_TOKEN = "fe"
MALE_TOKEN = "male"


def count_borrower_genders(labels: pd.Series) -> pd.DataFrame:
    """
    Count borrowers of each gender from labels like "female, female, male".

    Every "female" also contains "male", so the female count is subtracted
    from the raw "male" count. Missing or empty labels count as zero.

    Args:
        labels: Series of gender label strings

    Returns:
        DataFrame with integer columns borrower_female and borrower_male,
        aligned to the input index
    """
    text = labels.astype('object').where(labels.notna(), "").astype(str)

    female = text.str.count(FEMALE_TOKEN)
    # Only labels outside the female/male vocabulary can go negative here
    male = (text.str.count(MALE_TOKEN) - female).clip(lower=0)

    return pd.DataFrame({
        'borrower_female': female.astype('int64'),
        'borrower_male': male.astype('int64')
    }, index=labels.index)


def clean_loans(df: pd.DataFrame) -> pd.DataFrame:
    """
    Produce the cleaned loans table.

    Steps:
        1. Derive borrower_female / borrower_male from borrower_genders
        2. Drop use, tags, funded_amount and borrower_genders
        3. Keep the first row of any duplicated id
        4. Sort ascending by id (stable) and reset the index

    Args:
        df: Typed loans table from load_loans

    Returns:
        New cleaned DataFrame; the input is left untouched

    Raises:
        SchemaMismatchError: If a required input column is absent
    """
    missing: List[str] = [col for col in CLEANER_INPUT_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaMismatchError(missing, context="loans table")

    counts = count_borrower_genders(df['borrower_genders'])

    cleaned = df.drop(columns=DROPPED_COLUMNS).copy()
    cleaned['borrower_female'] = counts['borrower_female']
    cleaned['borrower_male'] = counts['borrower_male']

    duplicated = cleaned['id'].duplicated(keep='first')
    if duplicated.any():
        logger.warning(f"Dropping {int(duplicated.sum())} rows with a duplicated id")
        cleaned = cleaned.loc[~duplicated]

    cleaned = cleaned.sort_values('id', kind='mergesort').reset_index(drop=True)

    logger.info(
        f"Cleaned loans table: {len(cleaned)} rows, "
        f"{int(cleaned['borrower_female'].sum())} female / "
        f"{int(cleaned['borrower_male'].sum())} male borrowers"
    )

    return cleaned
