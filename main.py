#!/usr/bin/env python3
"""
Lender Trends Analysis - Main Pipeline
======================================

Tests whether the number of lenders per loan changes over time for one
country.

Stages:
    1. Load - Read and type the loans CSV
    2. Clean - Drop low-value columns, derive gender counts, order by id
    3. EDA - Exploratory figures over the cleaned table
    4. Features - Filter to one country and derive total_days
    5. Models - Linear trend, regression tree and random forest

Usage:
    # Run complete pipeline
    python main.py --data data/raw/kiva_loans.csv

    # Run up to a specific stage
    python main.py --data data/raw/kiva_loans.csv --phase linear

    # Analyse another country
    python main.py --data data/raw/kiva_loans.csv --country Kenya
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from lender_trends.data_loader import load_config, load_loans, print_data_summary
from lender_trends.cleaning import clean_loans
from lender_trends.features import derive_features
from lender_trends.eda import generate_eda_report, plot_lenders_over_time, plot_tree, plot_importance
from lender_trends.model import (
    fit_linear, fit_tree, fit_random_forest, residuals,
    print_linear_summary, print_forest_summary, summarize_models
)
from lender_trends.evaluation import evaluate_models, print_evaluation_report

logger = logging.getLogger(__name__)

PHASES = ['clean', 'eda', 'features', 'linear', 'tree', 'forest', 'all']


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the pipeline."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def run_cleaning(data_path: str) -> pd.DataFrame:
    """
    Load and clean the loans CSV.

    Args:
        data_path: Path to input CSV file

    Returns:
        Cleaned loans table
    """
    print("\n" + "=" * 70)
    print("LOADING AND CLEANING")
    print("=" * 70)

    raw, load_report = load_loans(data_path)
    print_data_summary(raw, load_report)

    return clean_loans(raw)


def run_eda(cleaned: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Exploratory figures over the cleaned table.

    Args:
        cleaned: Cleaned loans table
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')
    report = generate_eda_report(cleaned, output_dir=output_dir, show_plots=False)

    print("\nTop countries by number of loans:")
    print(report['country_counts'].to_string())
    print(f"\nBorrowers by gender: {report['gender_totals']}")
    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_features(cleaned: pd.DataFrame, config: Dict[str, Any]) -> pd.DataFrame:
    """
    Build the feature table for the configured country.

    Args:
        cleaned: Cleaned loans table
        config: Configuration dictionary

    Returns:
        Feature table
    """
    analysis = config.get('analysis', {})
    features = derive_features(
        cleaned,
        country=analysis['country'],
        max_loan_amount=analysis.get('max_loan_amount')
    )
    print(f"\nFeature rows for {analysis['country']}: {len(features)}")
    return features


def run_models(
    features: pd.DataFrame,
    config: Dict[str, Any],
    phase: str = 'all'
) -> Dict[str, Any]:
    """
    Fit the models up to `phase` and report them.

    Args:
        features: Feature table
        config: Configuration dictionary
        phase: Last model to fit ('linear', 'tree', 'forest' or 'all')

    Returns:
        Dictionary of fitted models, residuals and the evaluation result
    """
    analysis = config.get('analysis', {})
    target = analysis.get('target', 'lender_count')
    predictor = analysis.get('predictor', 'total_days')
    tree_predictors = analysis.get('tree_predictors', ['total_days', 'term_in_months'])
    model_config = config.get('model', {})
    figures_dir = Path(config.get('output', {}).get('figures_path', 'reports/figures/'))
    figures_dir.mkdir(parents=True, exist_ok=True)

    print("\n" + "=" * 70)
    print("MODEL FITTING")
    print("=" * 70)

    results: Dict[str, Any] = {}

    linear = fit_linear(features, target, predictor)
    print_linear_summary(linear)
    results['linear'] = linear
    results['residuals'] = residuals(linear)
    plot_lenders_over_time(features, linear, save_path=str(figures_dir / "04_lenders_over_time.png"))

    models = {'linear': linear}

    if phase in ('tree', 'forest', 'all'):
        tree_config = model_config.get('tree', {})
        tree = fit_tree(
            features, target, tree_predictors,
            min_samples_split=tree_config.get('min_samples_split', 20),
            min_samples_leaf=tree_config.get('min_samples_leaf', 7),
            complexity=tree_config.get('complexity', 0.01),
            max_depth=tree_config.get('max_depth'),
            seed=tree_config.get('seed', 0)
        )
        print("\nRegression tree rules:")
        print(tree.rules())
        plot_tree(tree, save_path=str(figures_dir / "05_regression_tree.png"))
        results['tree'] = tree
        models['tree'] = tree

    if phase in ('forest', 'all'):
        forest_config = model_config.get('forest', {})
        forest = fit_random_forest(
            features, target, tree_predictors,
            tree_count=forest_config.get('tree_count', 500),
            predictors_per_split=forest_config.get('predictors_per_split', 1),
            seed=forest_config.get('seed', 42),
            min_samples_leaf=forest_config.get('min_samples_leaf', 5),
            n_jobs=forest_config.get('n_jobs')
        )
        print_forest_summary(forest)
        plot_importance(forest, save_path=str(figures_dir / "06_forest_importance.png"))
        results['forest'] = forest
        models['forest'] = forest

    evaluation = evaluate_models(features, target, models, linear=linear, output_dir=str(figures_dir))
    print_evaluation_report(evaluation['comparison'])
    results['evaluation'] = evaluation
    results['summary'] = summarize_models(
        results.get('linear'), results.get('tree'), results.get('forest')
    )

    return results


def run_pipeline(
    data_path: str,
    config: Dict[str, Any],
    phase: str = 'all'
) -> Dict[str, Any]:
    """
    Execute the pipeline up to and including `phase`.

    Args:
        data_path: Path to input CSV file
        config: Configuration dictionary
        phase: One of PHASES

    Returns:
        Dictionary containing the results of every stage that ran
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    print("\n" + "=" * 70)
    print("LENDER TRENDS PIPELINE")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    results: Dict[str, Any] = {'config': config}

    results['cleaned'] = run_cleaning(data_path)
    if phase == 'clean':
        return results

    if phase in ('eda', 'all'):
        results['eda'] = run_eda(results['cleaned'], config)
        if phase == 'eda':
            return results

    results['features'] = run_features(results['cleaned'], config)
    if phase == 'features':
        return results

    results['models'] = run_models(results['features'], config, phase)

    summary = results['models']['summary']['linear']
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Loans analysed: {len(results['features'])}")
    print(f"  • Lender count trend: {summary['slope']:.5f} per day (p={summary['slope_p_value']:.4g})")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Lender count trend analysis for crowdfunded loans",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/kiva_loans.csv
  python main.py --data data/raw/kiva_loans.csv --phase eda
  python main.py --data data/raw/kiva_loans.csv --country Kenya
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Path to the input CSV file (default: data.raw_path from the config)'
    )

    parser.add_argument(
        '--country',
        type=str,
        default=None,
        help='Country to analyse (default: analysis.country from the config)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='config/config.yaml',
        help='Path to configuration file (default: config/config.yaml)'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Last stage to run (default: all)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    # Check if config exists
    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        return 1

    config = load_config(args.config)
    log_config = config.get('logging', {})
    setup_logging('DEBUG' if args.verbose else log_config.get('level', 'INFO'), log_config.get('file'))

    data_path = args.data or config.get('data', {}).get('raw_path')
    if args.country:
        config.setdefault('analysis', {})['country'] = args.country

    # Check if data file exists
    if not data_path or not Path(data_path).exists():
        print(f"Error: Data file not found: {data_path}")
        print("\nExpected format: CSV with columns id, country, loan_amount, funded_amount,")
        print("term_in_months, lender_count, date, borrower_genders, use, tags")
        return 1

    try:
        run_pipeline(data_path, config, args.phase)
        return 0

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
