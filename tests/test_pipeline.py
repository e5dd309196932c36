"""
Test Suite for the Main Pipeline
================================

End-to-end runs from a CSV file to fitted models.
"""

import pytest
import numpy as np
import pandas as pd

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from main import run_pipeline, PHASES


@pytest.fixture
def loans_csv(tmp_path):
    """Write a loans file with a falling lender trend for TestLand."""
    n = 60
    days = np.arange(n)
    testland = pd.DataFrame({
        'id': np.arange(n, 0, -1),
        'country': 'TestLand',
        'loan_amount': np.tile([150.0, 300.0, 450.0], n // 3),
        'funded_amount': np.tile([150.0, 300.0, 450.0], n // 3),
        'term_in_months': np.tile([8, 12, 14], n // 3),
        'lender_count': 100 - days + days % 2,
        'date': (pd.Timestamp('2014-01-01') + pd.to_timedelta(days, unit='D')).strftime('%Y-%m-%d'),
        'borrower_genders': np.tile(['female', 'female, male', 'male, male'], n // 3),
        'use': 'to buy stock',
        'tags': '#Retail',
    })
    other = testland.head(5).assign(id=np.arange(101, 106), country='Elsewhere')
    malformed = testland.head(1).assign(id=200, lender_count='many')

    path = tmp_path / "loans.csv"
    pd.concat([testland, other, malformed], ignore_index=True).to_csv(path, index=False)
    return str(path)


@pytest.fixture
def config(tmp_path):
    """Pipeline configuration with a small forest."""
    return {
        'analysis': {
            'country': 'TestLand',
            'max_loan_amount': None,
            'target': 'lender_count',
            'predictor': 'total_days',
            'tree_predictors': ['total_days', 'term_in_months'],
        },
        'model': {
            'tree': {'min_samples_split': 20, 'min_samples_leaf': 7, 'complexity': 0.01},
            'forest': {'tree_count': 20, 'predictors_per_split': 1, 'seed': 3},
        },
        'output': {'figures_path': str(tmp_path / "figures")},
    }


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_full_run(self, loans_csv, config, tmp_path):
        """Test a full run fits all three models on the TestLand rows."""
        results = run_pipeline(loans_csv, config, 'all')

        cleaned = results['cleaned']
        assert len(cleaned) == 65
        assert cleaned['id'].is_monotonic_increasing

        features = results['features']
        assert len(features) == 60
        assert features['total_days'].min() == 0

        summary = results['models']['summary']
        assert summary['linear']['slope'] == pytest.approx(-1.0, abs=0.05)
        assert summary['linear']['slope_p_value'] < 1e-6
        assert summary['forest']['tree_count'] == 20
        assert set(results['models']['evaluation']['comparison'].index) == {'linear', 'tree', 'forest'}

        figures = tmp_path / "figures"
        for name in ['01_country_counts.png', '04_lenders_over_time.png',
                     '05_regression_tree.png', '06_forest_importance.png']:
            assert (figures / name).exists()

    def test_stops_after_features(self, loans_csv, config):
        """Test the features phase does not fit models."""
        results = run_pipeline(loans_csv, config, 'features')

        assert 'features' in results
        assert 'models' not in results
        assert 'eda' not in results

    def test_linear_phase_skips_tree_models(self, loans_csv, config):
        """Test the linear phase fits only the linear model."""
        results = run_pipeline(loans_csv, config, 'linear')

        assert 'linear' in results['models']
        assert 'tree' not in results['models']
        assert 'forest' not in results['models']

    def test_unknown_phase(self, loans_csv, config):
        """Test an unknown phase is rejected."""
        with pytest.raises(ValueError, match="Unknown phase"):
            run_pipeline(loans_csv, config, 'predict')

    def test_phases(self):
        """Test every documented phase is accepted by the CLI."""
        assert PHASES[-1] == 'all'
        assert 'forest' in PHASES


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
