"""
Test Suite for Model Module
===========================

Tests for the linear, tree and random forest fits.
"""

import pytest
import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from lender_trends.model import (
    fit_linear, residuals, fit_tree, fit_random_forest, summarize_models
)
from lender_trends.exceptions import InsufficientDataError, SchemaMismatchError


@pytest.fixture
def trend_table():
    """Noisy falling trend over 100 days."""
    np.random.seed(42)
    total_days = np.arange(100)
    return pd.DataFrame({
        'total_days': total_days,
        'term_in_months': np.random.choice([8.0, 12.0, 14.0], size=100),
        'lender_count': 30 - 0.2 * total_days + np.random.randn(100),
    })


@pytest.fixture
def step_table():
    """Lender count jumps from 10 to 20 halfway through; term is noise."""
    np.random.seed(7)
    total_days = np.arange(100)
    return pd.DataFrame({
        'total_days': total_days,
        'term_in_months': np.random.uniform(6, 24, size=100),
        'lender_count': np.where(total_days < 50, 10.0, 20.0),
    })


class TestFitLinear:
    """Tests for fit_linear."""

    def test_two_points_exact(self):
        """Test two distinct points are interpolated exactly."""
        table = pd.DataFrame({'x': [0.0, 10.0], 'y': [5.0, 25.0]})
        model = fit_linear(table, 'y', 'x')

        assert model.slope == pytest.approx(2.0)
        assert model.intercept == pytest.approx(5.0)
        np.testing.assert_allclose(residuals(model)['residual'], 0.0, atol=1e-12)
        assert np.isnan(model.std_errors['x'])
        assert np.isnan(model.p_values['x'])

    def test_matches_scipy(self, trend_table):
        """Test estimates, standard errors and p-values against scipy."""
        model = fit_linear(trend_table, 'lender_count', 'total_days')
        reference = stats.linregress(trend_table['total_days'], trend_table['lender_count'])

        assert model.slope == pytest.approx(reference.slope)
        assert model.intercept == pytest.approx(reference.intercept)
        assert model.std_errors['total_days'] == pytest.approx(reference.stderr)
        assert model.std_errors['(Intercept)'] == pytest.approx(reference.intercept_stderr)
        assert model.p_values['total_days'] == pytest.approx(reference.pvalue)
        assert model.r_squared == pytest.approx(reference.rvalue ** 2)

    def test_matches_statsmodels(self, trend_table):
        """Test the coefficient table equals a statsmodels OLS fit."""
        model = fit_linear(trend_table, 'lender_count', 'total_days')
        reference = sm.OLS(
            trend_table['lender_count'].to_numpy(),
            sm.add_constant(trend_table['total_days'].to_numpy().astype(float))
        ).fit()

        table = model.coefficients_table()
        np.testing.assert_allclose(table['estimate'], reference.params)
        np.testing.assert_allclose(table['std_error'], reference.bse)
        np.testing.assert_allclose(table['t_value'], reference.tvalues)
        np.testing.assert_allclose(table['p_value'], reference.pvalues, rtol=1e-6)

    def test_detects_falling_trend(self, trend_table):
        """Test the slope is close to the true trend and significant."""
        model = fit_linear(trend_table, 'lender_count', 'total_days')

        assert model.slope == pytest.approx(-0.2, abs=0.02)
        assert model.p_values['total_days'] < 1e-10
        assert model.n_obs == 100
        assert model.df_resid == 98

    def test_coefficients_table(self, trend_table):
        """Test the coefficient table layout."""
        table = fit_linear(trend_table, 'lender_count', 'total_days').coefficients_table()

        assert list(table.index) == ['(Intercept)', 'total_days']
        assert list(table.columns) == ['estimate', 'std_error', 't_value', 'p_value']
        assert table.loc['total_days', 't_value'] == pytest.approx(
            table.loc['total_days', 'estimate'] / table.loc['total_days', 'std_error']
        )

    def test_missing_rows_dropped(self, trend_table):
        """Test incomplete rows are left out of the fit."""
        table = trend_table.copy()
        table.loc[[3, 7], 'lender_count'] = np.nan

        model = fit_linear(table, 'lender_count', 'total_days')
        assert model.n_obs == 98

    def test_one_row(self):
        """Test a single row raises InsufficientDataError."""
        with pytest.raises(InsufficientDataError):
            fit_linear(pd.DataFrame({'x': [1.0], 'y': [2.0]}), 'y', 'x')

    def test_constant_predictor(self):
        """Test a constant predictor raises InsufficientDataError."""
        table = pd.DataFrame({'x': [3.0, 3.0, 3.0], 'y': [1.0, 2.0, 3.0]})
        with pytest.raises(InsufficientDataError):
            fit_linear(table, 'y', 'x')

    def test_missing_column(self, trend_table):
        """Test an absent column raises SchemaMismatchError."""
        with pytest.raises(SchemaMismatchError):
            fit_linear(trend_table, 'lender_count', 'loan_amount')

    def test_non_numeric_column(self, trend_table):
        """Test a text predictor raises SchemaMismatchError."""
        table = trend_table.assign(country='TestLand')
        with pytest.raises(SchemaMismatchError, match="Non-numeric"):
            fit_linear(table, 'lender_count', 'country')


class TestResiduals:
    """Tests for residuals."""

    def test_fitted_plus_residual_is_observed(self, trend_table):
        """Test fitted + residual reproduces each observation."""
        diag = residuals(fit_linear(trend_table, 'lender_count', 'total_days'))

        np.testing.assert_allclose(
            diag['fitted'] + diag['residual'],
            trend_table['lender_count'],
            atol=1e-9
        )

    def test_row_order(self, trend_table):
        """Test residual rows follow the training rows."""
        shuffled = trend_table.sample(frac=1.0, random_state=0)
        diag = residuals(fit_linear(shuffled, 'lender_count', 'total_days'))

        assert list(diag.index) == list(shuffled.index)
        np.testing.assert_allclose(diag['observed'], shuffled['lender_count'])

    def test_residuals_sum_to_zero(self, trend_table):
        """Test OLS residuals sum to zero with an intercept."""
        diag = residuals(fit_linear(trend_table, 'lender_count', 'total_days'))
        assert diag['residual'].sum() == pytest.approx(0.0, abs=1e-8)


class TestFitTree:
    """Tests for fit_tree."""

    def test_splits_on_step(self, step_table):
        """Test the tree finds the step and predicts leaf means."""
        tree = fit_tree(step_table, 'lender_count', ['total_days', 'term_in_months'])

        nodes = tree.nodes()
        root = nodes.iloc[0]
        assert root['feature'] == 'total_days'
        assert root['threshold'] == pytest.approx(49.5)
        assert root['n_samples'] == 100
        assert root['value'] == pytest.approx(15.0)

        assert tree.n_leaves == 2
        assert sorted(tree.leaves()['value']) == pytest.approx([10.0, 20.0])

    def test_predict(self, step_table):
        """Test predictions come from the leaf means."""
        tree = fit_tree(step_table, 'lender_count', ['total_days', 'term_in_months'])
        query = pd.DataFrame({'total_days': [10, 80], 'term_in_months': [8.0, 8.0]})

        np.testing.assert_allclose(tree.predict(query), [10.0, 20.0])

    def test_rules_text(self, step_table):
        """Test the text rules name the split."""
        rules = fit_tree(step_table, 'lender_count', ['total_days', 'term_in_months']).rules()
        assert 'total_days <= 49.50' in rules

    def test_min_samples_split_stops_growth(self, step_table):
        """Test a node smaller than min_samples_split is not split."""
        tree = fit_tree(step_table, 'lender_count', ['total_days'], min_samples_split=101)

        assert tree.n_leaves == 1
        assert tree.nodes().iloc[0]['is_leaf']

    def test_node_depths(self, trend_table):
        """Test children sit one level below their parent."""
        tree = fit_tree(trend_table, 'lender_count', ['total_days', 'term_in_months'],
                        complexity=0.0)
        nodes = tree.nodes().set_index('node_id')

        for node_id, node in nodes.loc[~nodes['is_leaf']].iterrows():
            assert nodes.loc[node['left_child'], 'depth'] == node['depth'] + 1
            assert nodes.loc[node['right_child'], 'depth'] == node['depth'] + 1
        assert nodes['depth'].max() == tree.depth

    def test_insufficient_data(self):
        """Test a single row raises InsufficientDataError."""
        table = pd.DataFrame({'total_days': [1.0], 'lender_count': [3.0]})
        with pytest.raises(InsufficientDataError):
            fit_tree(table, 'lender_count', ['total_days'])

    def test_missing_column(self, step_table):
        """Test an absent predictor raises SchemaMismatchError."""
        with pytest.raises(SchemaMismatchError):
            fit_tree(step_table, 'lender_count', ['total_days', 'loan_amount'])


class TestFitRandomForest:
    """Tests for fit_random_forest."""

    PREDICTORS = ['total_days', 'term_in_months']

    def test_reproducible_with_seed(self, step_table):
        """Test the same seed gives identical predictions and importances."""
        first = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                  tree_count=50, predictors_per_split=1, seed=123)
        second = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                   tree_count=50, predictors_per_split=1, seed=123)

        np.testing.assert_array_equal(first.predict(step_table), second.predict(step_table))
        pd.testing.assert_frame_equal(first.importance, second.importance)
        assert first.oob_mse == second.oob_mse

    def test_parallel_matches_serial(self, step_table):
        """Test n_jobs does not change the fitted forest."""
        serial = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                   tree_count=30, seed=5, n_jobs=None)
        parallel = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                     tree_count=30, seed=5, n_jobs=2)

        np.testing.assert_allclose(serial.predict(step_table), parallel.predict(step_table))
        np.testing.assert_allclose(serial.importance.values, parallel.importance.values)

    def test_importance(self, step_table):
        """Test the informative predictor carries most of the node purity."""
        forest = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                   tree_count=100, predictors_per_split=1, seed=1)
        importance = forest.importance

        assert list(importance.index) == self.PREDICTORS
        assert (importance['inc_node_purity'] >= 0).all()
        assert importance.loc['total_days', 'inc_node_purity'] > \
            importance.loc['term_in_months', 'inc_node_purity']
        assert importance['relative_importance'].sum() == pytest.approx(1.0)

    def test_inc_node_purity_is_mean_rss_decrease(self, step_table):
        """Test inc_node_purity averages each tree's unnormalised RSS decrease."""
        forest = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                   tree_count=3, predictors_per_split=2, seed=11)

        per_tree = [
            est.tree_.compute_feature_importances(normalize=False)
            * est.tree_.weighted_n_node_samples[0]
            for est in forest.estimator.estimators_
        ]
        np.testing.assert_allclose(
            forest.importance['inc_node_purity'].to_numpy(),
            np.mean(per_tree, axis=0),
            rtol=1e-9
        )

    def test_single_tree_purity_by_hand(self, step_table):
        """Test one tree's node purity equals the RSS removed by its splits."""
        forest = fit_random_forest(step_table, 'lender_count', ['total_days'],
                                   tree_count=1, seed=3)
        tree = forest.estimator.estimators_[0].tree_

        expected = 0.0
        for node in range(tree.node_count):
            left, right = tree.children_left[node], tree.children_right[node]
            if left == -1:
                continue
            expected += (
                tree.weighted_n_node_samples[node] * tree.impurity[node]
                - tree.weighted_n_node_samples[left] * tree.impurity[left]
                - tree.weighted_n_node_samples[right] * tree.impurity[right]
            )

        assert forest.importance.loc['total_days', 'inc_node_purity'] == pytest.approx(expected)
        assert tree.weighted_n_node_samples[0] == pytest.approx(len(step_table))

    def test_out_of_bag(self, step_table):
        """Test out-of-bag error is reported and small on a clean step."""
        forest = fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                                   tree_count=100, predictors_per_split=2, seed=1)

        assert forest.tree_count == 100
        assert forest.oob_r2 > 0.5
        assert forest.oob_mse < 25.0

    def test_predictors_per_split_bounds(self, step_table):
        """Test predictors_per_split outside 1..p raises ValueError."""
        with pytest.raises(ValueError, match="predictors_per_split"):
            fit_random_forest(step_table, 'lender_count', self.PREDICTORS,
                              tree_count=10, predictors_per_split=3)

    def test_insufficient_data(self):
        """Test a single row raises InsufficientDataError."""
        table = pd.DataFrame({'total_days': [1.0], 'lender_count': [3.0]})
        with pytest.raises(InsufficientDataError):
            fit_random_forest(table, 'lender_count', ['total_days'], tree_count=10)


class TestSummarizeModels:
    """Tests for summarize_models."""

    def test_plain_data(self, step_table):
        """Test the summary holds plain numbers for each model."""
        linear = fit_linear(step_table, 'lender_count', 'total_days')
        tree = fit_tree(step_table, 'lender_count', ['total_days'])
        forest = fit_random_forest(step_table, 'lender_count', ['total_days'],
                                   tree_count=10, seed=0)

        summary = summarize_models(linear, tree, forest)

        assert summary['linear']['slope'] == pytest.approx(linear.slope)
        assert summary['tree']['n_leaves'] == 2
        assert set(summary['forest']['importance']) == {'total_days'}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
