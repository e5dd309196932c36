"""
Model Evaluation Module
=======================

Diagnostics for the fitted lender-count models.

Features:
    - RMSE, MAE, R² for any fitted model
    - Side-by-side comparison of the linear, tree and forest fits
    - Residual analysis for the linear model
    - Actual vs predicted plots
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import LinearModelResult, residuals

logger = logging.getLogger(__name__)


def calculate_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    """
    Calculate fit metrics for one set of predictions.

    Args:
        y_true: Observed target values
        y_pred: Predicted target values

    Returns:
        Dictionary with rmse, mae, r2, mean_residual, std_residual, max_abs_residual, n_samples
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    resid = y_true - y_pred

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
        'mean_residual': float(np.mean(resid)),
        'std_residual': float(np.std(resid)),
        'max_abs_residual': float(np.max(np.abs(resid))),
        'n_samples': int(len(y_true))
    }


def _predict(model, table: pd.DataFrame) -> np.ndarray:
    if isinstance(model, LinearModelResult):
        return model.predict(table[model.predictor_col].astype('float64').to_numpy())
    return model.predict(table)


def _scored_rows(table: pd.DataFrame, target_col: str, model) -> Tuple[np.ndarray, np.ndarray]:
    """Observed and predicted target over rows complete for `model`."""
    if isinstance(model, LinearModelResult):
        needed = [target_col, model.predictor_col]
    else:
        needed = [target_col] + list(model.predictor_cols)

    scored = table.dropna(subset=needed)
    return scored[target_col].astype('float64').to_numpy(), _predict(model, scored)


def compare_models(
    table: pd.DataFrame,
    target_col: str,
    models: Dict[str, Any]
) -> pd.DataFrame:
    """
    Compare fitted models on the same table.

    Args:
        table: Feature table to score on
        target_col: Observed target column
        models: Mapping of display name to fitted result object

    Returns:
        DataFrame indexed by model name with one column per metric
    """
    rows = {}
    for name, model in models.items():
        y_true, y_pred = _scored_rows(table, target_col, model)
        rows[name] = calculate_metrics(y_true, y_pred)
        logger.info(f"{name}: RMSE={rows[name]['rmse']:.4f}, R²={rows[name]['r2']:.4f}")

    return pd.DataFrame.from_dict(rows, orient='index')


def plot_residuals(
    model: LinearModelResult,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residuals vs fitted values and the residual distribution of a linear fit.

    Args:
        model: Result of fit_linear
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    diag = residuals(model)

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].scatter(diag['fitted'], diag['residual'], alpha=0.4, s=12)
    axes[0].axhline(0, color='red', linestyle='--', linewidth=1.5)
    axes[0].set_xlabel('Fitted')
    axes[0].set_ylabel('Residual (Observed - Fitted)')
    axes[0].set_title('Residuals vs Fitted', fontweight='bold')

    has_spread = len(diag) > 2 and diag['residual'].std() > 0
    sns.histplot(diag['residual'], kde=has_spread, ax=axes[1], bins=50, alpha=0.7)
    axes[1].axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
    axes[1].set_xlabel('Residual')
    axes[1].set_title(f"Residual Distribution (Std: {diag['residual'].std():.4f})", fontweight='bold')
    axes[1].legend(fontsize=8)

    plt.suptitle(f'Residual Analysis: {model.target_col} ~ {model.predictor_col}',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_actual_vs_predicted(
    table: pd.DataFrame,
    target_col: str,
    models: Dict[str, Any],
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Actual vs predicted scatter, one panel per model.

    Args:
        table: Feature table
        target_col: Observed target column
        models: Mapping of display name to fitted result object
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    names: List[str] = list(models)
    fig, axes = plt.subplots(1, len(names), figsize=figsize, squeeze=False)

    for ax, name in zip(axes[0], names):
        y_true, y_pred = _scored_rows(table, target_col, models[name])

        ax.scatter(y_true, y_pred, alpha=0.4, s=12)
        lo = min(y_true.min(), y_pred.min())
        hi = max(y_true.max(), y_pred.max())
        ax.plot([lo, hi], [lo, hi], 'r--', linewidth=2, label='Perfect')

        metrics = calculate_metrics(y_true, y_pred)
        ax.set_xlabel('Actual')
        ax.set_ylabel('Predicted')
        ax.set_title(f"{name}\nR²={metrics['r2']:.4f}, RMSE={metrics['rmse']:.4f}",
                     fontsize=10, fontweight='bold')
        ax.legend(loc='upper left', fontsize=8)

    plt.suptitle('Actual vs Predicted', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def evaluate_models(
    table: pd.DataFrame,
    target_col: str,
    models: Dict[str, Any],
    linear: Optional[LinearModelResult] = None,
    output_dir: Optional[str] = None
) -> Dict[str, Any]:
    """
    Compare models and, when `output_dir` is given, save diagnostic figures.

    Args:
        table: Feature table
        target_col: Observed target column
        models: Mapping of display name to fitted result object
        linear: Linear fit whose residuals are plotted (optional)
        output_dir: Directory for figures (optional)

    Returns:
        Dictionary with the comparison table and saved figure names
    """
    logger.info("=" * 60)
    logger.info("EVALUATING MODELS")
    logger.info("=" * 60)

    comparison = compare_models(table, target_col, models)
    figures = []

    if output_dir is not None:
        figures_dir = Path(output_dir)
        figures_dir.mkdir(parents=True, exist_ok=True)

        if linear is not None:
            plot_residuals(linear, save_path=str(figures_dir / "eval_residuals.png"))
            figures.append("eval_residuals.png")

        plot_actual_vs_predicted(
            table, target_col, models,
            save_path=str(figures_dir / "eval_actual_vs_predicted.png")
        )
        figures.append("eval_actual_vs_predicted.png")
        plt.close('all')

    return {'comparison': comparison, 'figures': figures}


def print_evaluation_report(comparison: pd.DataFrame) -> None:
    """
    Print a formatted model comparison to console.

    Args:
        comparison: DataFrame from compare_models
    """
    print("\n" + "=" * 70)
    print("MODEL COMPARISON (in-sample)")
    print("=" * 70)
    print(f"{'Model':<20} {'RMSE':<12} {'MAE':<12} {'R²':<12} {'Samples':<10}")
    print("-" * 70)

    for name, row in comparison.iterrows():
        print(f"{name:<20} {row['rmse']:<12.4f} {row['mae']:<12.4f} "
              f"{row['r2']:<12.4f} {int(row['n_samples']):<10}")

    print("=" * 70 + "\n")
