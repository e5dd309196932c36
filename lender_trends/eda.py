"""
Exploratory Data Analysis (EDA) Module
======================================

Plots and summary tables over the cleaned loans table, the feature table
and the fitted models.

Functions:
    - plot_country_counts: Loans per country bar chart
    - plot_gender_counts: Borrower gender totals
    - plot_distributions: Histograms of the numeric loan columns
    - plot_lenders_over_time: Lender count against date with the linear trend
    - plot_tree: Regression tree diagram
    - plot_importance: Random forest variable importance
    - generate_eda_report: Save the exploratory figures and return summary tables
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from sklearn.tree import plot_tree as sklearn_plot_tree

from .model import LinearModelResult, TreeModelResult, ForestModelResult

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

DISTRIBUTION_COLUMNS = ['loan_amount', 'term_in_months', 'lender_count']


def _save(fig: plt.Figure, save_path: Optional[str], label: str) -> None:
    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"{label} saved to {save_path}")


def country_counts(df: pd.DataFrame, top_n: int = 15) -> pd.DataFrame:
    """Loan count and median lender count for the `top_n` busiest countries."""
    grouped = df.groupby('country').agg(
        loans=('id', 'count'),
        median_lenders=('lender_count', 'median'),
        median_amount=('loan_amount', 'median')
    )
    return grouped.sort_values('loans', ascending=False).head(top_n)


def plot_country_counts(
    df: pd.DataFrame,
    top_n: int = 15,
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar chart of the number of loans per country.

    Args:
        df: Cleaned loans table
        top_n: Number of countries to show
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    counts = country_counts(df, top_n)

    fig, ax = plt.subplots(figsize=figsize)
    sns.barplot(x=counts['loans'], y=counts.index, ax=ax, orient='h')
    ax.set_xlabel('Loans')
    ax.set_ylabel('Country')
    ax.set_title(f'Top {len(counts)} Countries by Number of Loans', fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Country counts plot")
    return fig


def plot_gender_counts(
    df: pd.DataFrame,
    figsize: Tuple[int, int] = (7, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Total female and male borrowers.

    Args:
        df: Cleaned loans table
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    totals = df[['borrower_female', 'borrower_male']].sum()

    fig, ax = plt.subplots(figsize=figsize)
    ax.bar(['female', 'male'], totals.values, color=['coral', 'steelblue'], alpha=0.8)
    for i, value in enumerate(totals.values):
        ax.text(i, value, f'{int(value):,}', ha='center', va='bottom')
    ax.set_ylabel('Borrowers')
    ax.set_title('Borrowers by Gender', fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Gender counts plot")
    return fig


def plot_distributions(
    df: pd.DataFrame,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram (log-scaled counts) for each numeric loan column.

    Args:
        df: Cleaned loans table
        columns: Columns to plot (default: loan_amount, term_in_months, lender_count)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    if columns is None:
        columns = [col for col in DISTRIBUTION_COLUMNS if col in df.columns]

    fig, axes = plt.subplots(1, len(columns), figsize=figsize, squeeze=False)

    for ax, col in zip(axes[0], columns):
        values = df[col].dropna().astype('float64')
        sns.histplot(values, ax=ax, bins=50, alpha=0.7)
        ax.set_yscale('log')

        median_val = values.median()
        ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.2f}')

        skew = stats.skew(values) if len(values) > 2 else float('nan')
        ax.set_title(f'{col} (skew={skew:.2f})', fontsize=10, fontweight='bold')
        ax.legend(fontsize=8)

    plt.suptitle('Distribution Analysis', fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Distribution plots")
    return fig


def plot_lenders_over_time(
    features: pd.DataFrame,
    linear: Optional[LinearModelResult] = None,
    figsize: Tuple[int, int] = (12, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Lender count per loan against date, with the fitted linear trend.

    Args:
        features: Feature table from derive_features
        linear: fit_linear result on total_days (optional)
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.scatter(features['date'], features['lender_count'].astype('float64'),
               alpha=0.3, s=10, label='Loans')

    if linear is not None and len(features):
        ordered = features.sort_values('total_days')
        trend = linear.predict(ordered[linear.predictor_col].to_numpy())
        ax.plot(ordered['date'], trend, 'r-', linewidth=2,
                label=f'Trend (slope: {linear.slope:.4f}/day)')

    ax.set_xlabel('Date')
    ax.set_ylabel('Lender count')
    ax.set_title('Lenders per Loan over Time', fontsize=14, fontweight='bold')
    ax.legend(loc='upper right')
    plt.tight_layout()

    _save(fig, save_path, "Lenders over time plot")
    return fig


def plot_tree(
    tree: TreeModelResult,
    figsize: Tuple[int, int] = (16, 8),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Diagram of a fitted regression tree.

    Args:
        tree: Result of fit_tree
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)
    sklearn_plot_tree(
        tree.estimator,
        feature_names=list(tree.predictor_cols),
        filled=True,
        rounded=True,
        precision=1,
        ax=ax
    )
    ax.set_title(f'Regression Tree: {tree.target_col}', fontsize=14, fontweight='bold')

    _save(fig, save_path, "Tree plot")
    return fig


def plot_importance(
    forest: ForestModelResult,
    figsize: Tuple[int, int] = (8, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Horizontal bar chart of node-purity importance.

    Args:
        forest: Result of fit_random_forest
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    importance = forest.importance['inc_node_purity'].sort_values()

    fig, ax = plt.subplots(figsize=figsize)
    ax.barh(importance.index, importance.values, color='steelblue', alpha=0.8)
    ax.set_xlabel('Increase in node purity')
    ax.set_title('Random Forest Variable Importance', fontsize=14, fontweight='bold')
    plt.tight_layout()

    _save(fig, save_path, "Importance plot")
    return fig


def generate_eda_report(
    df: pd.DataFrame,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate the exploratory figures for the cleaned loans table.

    Args:
        df: Cleaned loans table
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing summary tables and figure file names
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "figures": [],
        "country_counts": country_counts(df),
        "gender_totals": df[['borrower_female', 'borrower_male']].sum().astype(int).to_dict(),
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Plotting loans per country...")
    plot_country_counts(df, save_path=str(output_dir / "01_country_counts.png"))
    report["figures"].append("01_country_counts.png")

    logger.info("Plotting borrower genders...")
    plot_gender_counts(df, save_path=str(output_dir / "02_gender_counts.png"))
    report["figures"].append("02_gender_counts.png")

    logger.info("Plotting distributions...")
    plot_distributions(df, save_path=str(output_dir / "03_distributions.png"))
    report["figures"].append("03_distributions.png")

    for col in DISTRIBUTION_COLUMNS:
        if col in df.columns:
            values = df[col].astype('float64')
            report["statistics"][col] = {
                "mean": float(values.mean()),
                "median": float(values.median()),
                "std": float(values.std()),
                "min": float(values.min()),
                "max": float(values.max())
            }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)

    return report
