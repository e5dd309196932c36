"""
Feature Derivation Module
=========================

Builds the per-country feature table used by the model fits.

Functions:
    - approximate_day_offset: Date to day offset since the start of 2014 (365-day years)
    - derive_features: Filter the cleaned table and add total_days
"""

import logging
from typing import Optional

import pandas as pd

from .exceptions import SchemaMismatchError

logger = logging.getLogger(__name__)

EPOCH_YEAR = 2014
DAYS_PER_YEAR = 365

FEATURE_COLUMNS = ['date', 'lender_count', 'term_in_months', 'total_days']
FEATURE_INPUT_COLUMNS = ['country', 'loan_amount', 'date', 'lender_count', 'term_in_months']


def approximate_day_offset(dates: pd.Series, epoch_year: int = EPOCH_YEAR) -> pd.Series:
    """
    Convert dates to a day offset from January 1st of `epoch_year`.

    Every year counts as 365 days, so offsets drift by one day per leap
    year. 2014-01-01 maps to 0, 2014-12-31 to 364 and 2015-01-01 to 365.

    Args:
        dates: Series of datetimes without missing values
        epoch_year: Year whose first day is offset 0

    Returns:
        Integer Series aligned to the input index
    """
    dates = pd.to_datetime(dates)
    offset = (dates.dt.year - epoch_year) * DAYS_PER_YEAR + (dates.dt.dayofyear - 1)
    return offset.astype('int64')


def derive_features(
    df: pd.DataFrame,
    country: str,
    max_loan_amount: Optional[float] = None
) -> pd.DataFrame:
    """
    Build the feature table for one country.

    Args:
        df: Cleaned loans table
        country: Exact, case-sensitive country name to keep
        max_loan_amount: Keep only loans with loan_amount <= this value (optional)

    Returns:
        DataFrame with columns date, lender_count, term_in_months, total_days.
        Empty (with those columns) when nothing matches.

    Raises:
        SchemaMismatchError: If a required input column is absent
    """
    missing = [col for col in FEATURE_INPUT_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaMismatchError(missing, context="cleaned table")

    mask = df['country'] == country
    if max_loan_amount is not None:
        mask &= df['loan_amount'] <= max_loan_amount
    mask &= df['date'].notna()

    subset = df.loc[mask, ['date', 'lender_count', 'term_in_months']].copy()
    subset['date'] = pd.to_datetime(subset['date'])
    subset['total_days'] = approximate_day_offset(subset['date'])
    subset = subset.reset_index(drop=True)[FEATURE_COLUMNS]

    if subset.empty:
        logger.warning(f"No rows matched country={country!r}, max_loan_amount={max_loan_amount}")
    else:
        logger.info(
            f"Derived {len(subset)} feature rows for {country} "
            f"(total_days {subset['total_days'].min()}..{subset['total_days'].max()})"
        )

    return subset
