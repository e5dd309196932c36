"""
Model Fitting Module
====================

Fits the models used to test whether lender counts change over time.

Features:
    - Ordinary least squares with coefficient standard errors and p-values
    - Residual diagnostics for the linear fit
    - Regression tree with explicit stopping rules and an inspectable structure
    - Seeded random forest with node-purity variable importance
"""

import logging
from typing import Dict, Any, List, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from sklearn.ensemble import RandomForestRegressor
from sklearn.tree import DecisionTreeRegressor, export_text

from .exceptions import InsufficientDataError, SchemaMismatchError

logger = logging.getLogger(__name__)

MIN_ROWS_LINEAR = 2
MIN_ROWS_TREE = 2
MIN_ROWS_FOREST = 2


def _complete_rows(
    table: pd.DataFrame,
    columns: Sequence[str],
    min_rows: int,
    model_name: str
) -> pd.DataFrame:
    """
    Select the modelling columns as floats and drop incomplete rows.

    Raises:
        SchemaMismatchError: If a column is absent
        InsufficientDataError: If fewer than `min_rows` complete rows remain
    """
    missing = [col for col in columns if col not in table.columns]
    if missing:
        raise SchemaMismatchError(missing, context=f"{model_name} input")

    non_numeric = [col for col in columns if not pd.api.types.is_numeric_dtype(table[col])]
    if non_numeric:
        raise SchemaMismatchError(
            non_numeric, context=f"{model_name} input", reason="Non-numeric columns"
        )

    data = table[list(columns)].astype('float64')
    complete = data.dropna()

    dropped = len(data) - len(complete)
    if dropped > 0:
        logger.warning(f"{model_name}: dropped {dropped} rows with missing values")

    if len(complete) < min_rows:
        raise InsufficientDataError(
            f"{model_name} needs at least {min_rows} complete rows, got {len(complete)}"
        )

    return complete


class LinearModelResult:
    """
    Simple linear regression of one target on one predictor, with intercept.

    Coefficient statistics are indexed by '(Intercept)' and the predictor name.
    """

    def __init__(
        self,
        target_col: str,
        predictor_col: str,
        intercept: float,
        slope: float,
        std_errors: Dict[str, float],
        t_values: Dict[str, float],
        p_values: Dict[str, float],
        r_squared: float,
        observed: pd.Series,
        x: pd.Series
    ):
        self.target_col = target_col
        self.predictor_col = predictor_col
        self.intercept = intercept
        self.slope = slope
        self.std_errors = std_errors
        self.t_values = t_values
        self.p_values = p_values
        self.r_squared = r_squared
        self.observed = observed
        self.x = x

    @property
    def n_obs(self) -> int:
        return len(self.observed)

    @property
    def df_resid(self) -> int:
        return self.n_obs - 2

    def predict(self, x) -> np.ndarray:
        """Predicted target for predictor values `x`."""
        return self.intercept + self.slope * np.asarray(x, dtype=float)

    def coefficients_table(self) -> pd.DataFrame:
        """Coefficient table in the usual regression-summary layout."""
        names = ['(Intercept)', self.predictor_col]
        return pd.DataFrame({
            'estimate': [self.intercept, self.slope],
            'std_error': [self.std_errors[n] for n in names],
            't_value': [self.t_values[n] for n in names],
            'p_value': [self.p_values[n] for n in names]
        }, index=names)


def fit_linear(
    table: pd.DataFrame,
    target_col: str,
    predictor_col: str
) -> LinearModelResult:
    """
    Fit target = intercept + slope * predictor by ordinary least squares.

    Estimates and the classical (non-robust) standard errors, t values and
    two-sided p-values come from statsmodels OLS. With exactly two rows the line
    passes through both points and the standard errors are undefined (NaN).

    Args:
        table: Feature table
        target_col: Name of the response column
        predictor_col: Name of the single predictor column

    Returns:
        Fitted LinearModelResult

    Raises:
        SchemaMismatchError: If either column is absent
        InsufficientDataError: If fewer than two complete rows, or the predictor is constant
    """
    data = _complete_rows(table, [target_col, predictor_col], MIN_ROWS_LINEAR, "fit_linear")

    x = data[predictor_col].to_numpy()
    y = data[target_col].to_numpy()
    n = len(y)

    if np.unique(x).size < 2:
        raise InsufficientDataError(
            f"fit_linear needs at least two distinct values of '{predictor_col}'"
        )

    ols = sm.OLS(y, sm.add_constant(x, has_constant='add')).fit()
    intercept, slope = (float(v) for v in ols.params)
    r_squared = float(ols.rsquared) if np.ptp(y) > 0 else float('nan')

    names = ['(Intercept)', predictor_col]
    if ols.df_resid > 0:
        se = np.asarray(ols.bse, dtype=float)
        t_vals = np.asarray(ols.tvalues, dtype=float)
        p_vals = np.asarray(ols.pvalues, dtype=float)
    else:
        # No residual degrees of freedom: the line interpolates both points
        se = t_vals = p_vals = np.full(2, np.nan)

    result = LinearModelResult(
        target_col=target_col,
        predictor_col=predictor_col,
        intercept=intercept,
        slope=slope,
        std_errors=dict(zip(names, se.tolist())),
        t_values=dict(zip(names, t_vals.tolist())),
        p_values=dict(zip(names, p_vals.tolist())),
        r_squared=r_squared,
        observed=data[target_col],
        x=data[predictor_col]
    )

    logger.info(
        f"fit_linear: {target_col} ~ {predictor_col} on {n} rows: "
        f"slope={slope:.6f} (p={result.p_values[predictor_col]:.4g}), "
        f"intercept={intercept:.4f}, R²={r_squared:.4f}"
    )

    return result


def residuals(model: LinearModelResult) -> pd.DataFrame:
    """
    Fitted values and residuals for each training row.

    Args:
        model: Result of fit_linear

    Returns:
        DataFrame with columns observed, fitted, residual, indexed like the
        training rows and in their original order
    """
    fitted = model.predict(model.x.to_numpy())
    observed = model.observed.to_numpy()

    return pd.DataFrame({
        'observed': observed,
        'fitted': fitted,
        'residual': observed - fitted
    }, index=model.observed.index)


class TreeModelResult:
    """Regression tree fitted on one target; leaves predict the mean target."""

    def __init__(
        self,
        estimator: DecisionTreeRegressor,
        target_col: str,
        predictor_cols: List[str],
        n_obs: int
    ):
        self.estimator = estimator
        self.target_col = target_col
        self.predictor_cols = predictor_cols
        self.n_obs = n_obs

    @property
    def n_leaves(self) -> int:
        return int(self.estimator.get_n_leaves())

    @property
    def depth(self) -> int:
        return int(self.estimator.get_depth())

    def predict(self, table: pd.DataFrame) -> np.ndarray:
        X = table[self.predictor_cols].astype('float64')
        return self.estimator.predict(X)

    def nodes(self) -> pd.DataFrame:
        """
        One row per node in depth-first order.

        Internal nodes send rows with `feature <= threshold` to `left_child`.
        `value` is the mean target of the node's training rows.
        """
        return _tree_nodes(self.estimator, self.predictor_cols)

    def leaves(self) -> pd.DataFrame:
        nodes = self.nodes()
        return nodes.loc[nodes['is_leaf']].reset_index(drop=True)

    def rules(self, decimals: int = 2) -> str:
        """Text rendering of the split rules and leaf means."""
        return export_text(
            self.estimator,
            feature_names=list(self.predictor_cols),
            decimals=decimals
        )


def _tree_nodes(estimator, predictor_cols: Sequence[str]) -> pd.DataFrame:
    tree = estimator.tree_
    depths = np.zeros(tree.node_count, dtype=int)
    stack = [0]
    while stack:
        node = stack.pop()
        for child in (tree.children_left[node], tree.children_right[node]):
            if child != -1:
                depths[child] = depths[node] + 1
                stack.append(child)

    rows = []
    for node in range(tree.node_count):
        is_leaf = tree.children_left[node] == -1
        rows.append({
            'node_id': node,
            'depth': int(depths[node]),
            'feature': None if is_leaf else predictor_cols[tree.feature[node]],
            'threshold': np.nan if is_leaf else float(tree.threshold[node]),
            'left_child': None if is_leaf else int(tree.children_left[node]),
            'right_child': None if is_leaf else int(tree.children_right[node]),
            'n_samples': int(tree.n_node_samples[node]),
            'value': float(tree.value[node].ravel()[0]),
            'is_leaf': bool(is_leaf)
        })

    return pd.DataFrame(rows)


def fit_tree(
    table: pd.DataFrame,
    target_col: str,
    predictor_cols: Sequence[str],
    min_samples_split: int = 20,
    min_samples_leaf: int = 7,
    complexity: float = 0.01,
    max_depth: Optional[int] = None,
    seed: int = 0
) -> TreeModelResult:
    """
    Grow a regression tree with squared-error splits.

    Args:
        table: Feature table
        target_col: Response column
        predictor_cols: Columns the tree may split on
        min_samples_split: Minimum rows in a node for it to be split
        min_samples_leaf: Minimum rows in each child of a split
        complexity: Minimum fraction of the root sum of squares a split must
            remove to be kept
        max_depth: Maximum depth (None for unlimited)
        seed: Seed for tie-breaking between equally good splits

    Returns:
        Fitted TreeModelResult

    Raises:
        SchemaMismatchError: If a column is absent
        InsufficientDataError: If fewer than two complete rows
    """
    predictor_cols = list(predictor_cols)
    data = _complete_rows(table, [target_col] + predictor_cols, MIN_ROWS_TREE, "fit_tree")

    X = data[predictor_cols]
    y = data[target_col].to_numpy()

    # sklearn compares the node-weighted RSS decrease divided by n
    min_impurity_decrease = complexity * float(np.var(y))

    estimator = DecisionTreeRegressor(
        criterion='squared_error',
        min_samples_split=min_samples_split,
        min_samples_leaf=min_samples_leaf,
        min_impurity_decrease=min_impurity_decrease,
        max_depth=max_depth,
        random_state=seed
    )
    estimator.fit(X, y)

    result = TreeModelResult(estimator, target_col, predictor_cols, n_obs=len(data))

    logger.info(
        f"fit_tree: {target_col} ~ {' + '.join(predictor_cols)} on {len(data)} rows: "
        f"{result.n_leaves} leaves, depth {result.depth}"
    )

    return result


class ForestModelResult:
    """
    Random forest of regression trees.

    Attributes:
        importance: DataFrame indexed by predictor with inc_node_purity (mean
            RSS decrease per tree from splits on that predictor) and
            relative_importance (the same scores normalised per tree)
        oob_mse: Mean squared out-of-bag residual (NaN when not computed)
        oob_r2: Fraction of target variance explained out of bag
    """

    def __init__(
        self,
        estimator: RandomForestRegressor,
        target_col: str,
        predictor_cols: List[str],
        n_obs: int,
        importance: pd.DataFrame,
        oob_mse: float,
        oob_r2: float
    ):
        self.estimator = estimator
        self.target_col = target_col
        self.predictor_cols = predictor_cols
        self.n_obs = n_obs
        self.importance = importance
        self.oob_mse = oob_mse
        self.oob_r2 = oob_r2

    @property
    def tree_count(self) -> int:
        return len(self.estimator.estimators_)

    def predict(self, table: pd.DataFrame) -> np.ndarray:
        X = table[self.predictor_cols].astype('float64')
        return self.estimator.predict(X)


def node_purity_increase(estimator: RandomForestRegressor, n_features: int) -> np.ndarray:
    """
    Average over trees of the RSS removed by splits on each feature.

    Node impurity is the in-bag mean squared error, so weighted samples times
    impurity is the node's residual sum of squares.
    """
    totals = np.zeros(n_features)

    for tree_estimator in estimator.estimators_:
        tree = tree_estimator.tree_
        left = tree.children_left
        right = tree.children_right
        internal = np.flatnonzero(left != -1)

        rss = tree.weighted_n_node_samples * tree.impurity
        gain = rss[internal] - rss[left[internal]] - rss[right[internal]]
        totals += np.bincount(tree.feature[internal], weights=gain, minlength=n_features)

    return totals / len(estimator.estimators_)


def fit_random_forest(
    table: pd.DataFrame,
    target_col: str,
    predictor_cols: Sequence[str],
    tree_count: int = 500,
    predictors_per_split: int = 1,
    seed: int = 42,
    min_samples_leaf: int = 5,
    oob_score: bool = True,
    n_jobs: Optional[int] = None
) -> ForestModelResult:
    """
    Fit a random forest on bootstrap resamples of the rows.

    Each split considers a random subset of `predictors_per_split`
    predictors. Predictions average the trees. A fixed `seed` fixes both the
    bootstrap draws and the predictor subsets; `n_jobs` does not change the
    result.

    Args:
        table: Feature table
        target_col: Response column
        predictor_cols: Candidate predictors
        tree_count: Number of trees
        predictors_per_split: Predictors sampled at each split
        seed: Random seed
        min_samples_leaf: Minimum rows in a leaf
        oob_score: Whether to compute out-of-bag error
        n_jobs: Parallel jobs for tree building (None for one)

    Returns:
        Fitted ForestModelResult

    Raises:
        SchemaMismatchError: If a column is absent
        InsufficientDataError: If fewer than two complete rows
        ValueError: If predictors_per_split is outside 1..len(predictor_cols)
    """
    predictor_cols = list(predictor_cols)

    if not 1 <= predictors_per_split <= len(predictor_cols):
        raise ValueError(
            f"predictors_per_split must be between 1 and {len(predictor_cols)}, "
            f"got {predictors_per_split}"
        )

    data = _complete_rows(
        table, [target_col] + predictor_cols, MIN_ROWS_FOREST, "fit_random_forest"
    )

    X = data[predictor_cols]
    y = data[target_col].to_numpy()

    logger.info("=" * 60)
    logger.info(f"Fitting random forest: {target_col} ~ {' + '.join(predictor_cols)}")
    logger.info(f"  - rows: {len(data)}")
    logger.info(f"  - tree_count: {tree_count}")
    logger.info(f"  - predictors_per_split: {predictors_per_split}")
    logger.info(f"  - min_samples_leaf: {min_samples_leaf}")
    logger.info(f"  - seed: {seed}")

    estimator = RandomForestRegressor(
        n_estimators=tree_count,
        criterion='squared_error',
        max_features=predictors_per_split,
        min_samples_leaf=min_samples_leaf,
        bootstrap=True,
        oob_score=oob_score,
        random_state=seed,
        n_jobs=n_jobs
    )
    estimator.fit(X, y)

    importance = pd.DataFrame({
        'inc_node_purity': node_purity_increase(estimator, len(predictor_cols)),
        'relative_importance': estimator.feature_importances_
    }, index=pd.Index(predictor_cols, name='predictor'))

    oob_mse = float('nan')
    oob_r2 = float('nan')
    if oob_score:
        oob_pred = np.ravel(estimator.oob_prediction_)
        oob_mse = float(np.mean((y - oob_pred) ** 2))
        oob_r2 = float(estimator.oob_score_)

    result = ForestModelResult(
        estimator=estimator,
        target_col=target_col,
        predictor_cols=predictor_cols,
        n_obs=len(data),
        importance=importance,
        oob_mse=oob_mse,
        oob_r2=oob_r2
    )

    logger.info(f"  - OOB mean squared residual: {oob_mse:.4f}")
    logger.info(f"  - OOB variance explained: {oob_r2 * 100:.2f}%")
    logger.info("=" * 60)

    return result


def print_linear_summary(model: LinearModelResult) -> None:
    """
    Print the coefficient table of a linear fit.

    Args:
        model: Result of fit_linear
    """
    print("\n" + "=" * 60)
    print(f"LINEAR MODEL: {model.target_col} ~ {model.predictor_col}")
    print("=" * 60)
    print(model.coefficients_table().to_string(float_format=lambda v: f"{v:.6g}"))
    print(f"\nR²: {model.r_squared:.4f} on {model.n_obs} rows ({model.df_resid} residual df)")
    print("=" * 60 + "\n")


def print_forest_summary(model: ForestModelResult) -> None:
    """
    Print the out-of-bag error and variable importance of a forest.

    Args:
        model: Result of fit_random_forest
    """
    print("\n" + "=" * 60)
    print(f"RANDOM FOREST: {model.target_col} ~ {' + '.join(model.predictor_cols)}")
    print("=" * 60)
    print(f"Trees: {model.tree_count} | Rows: {model.n_obs}")
    print(f"Mean of squared residuals (OOB): {model.oob_mse:.4f}")
    print(f"% Var explained (OOB): {model.oob_r2 * 100:.2f}")
    print("\nVariable importance:")
    print(model.importance.sort_values('inc_node_purity', ascending=False).round(4).to_string())
    print("=" * 60 + "\n")


def summarize_models(
    linear: Optional[LinearModelResult] = None,
    tree: Optional[TreeModelResult] = None,
    forest: Optional[ForestModelResult] = None
) -> Dict[str, Any]:
    """Collect the headline numbers of each fitted model as plain data."""
    summary: Dict[str, Any] = {}

    if linear is not None:
        summary['linear'] = {
            'slope': linear.slope,
            'intercept': linear.intercept,
            'slope_p_value': linear.p_values[linear.predictor_col],
            'r_squared': linear.r_squared,
            'n_obs': linear.n_obs
        }
    if tree is not None:
        summary['tree'] = {
            'n_leaves': tree.n_leaves,
            'depth': tree.depth,
            'n_obs': tree.n_obs
        }
    if forest is not None:
        summary['forest'] = {
            'tree_count': forest.tree_count,
            'oob_mse': forest.oob_mse,
            'oob_r2': forest.oob_r2,
            'importance': forest.importance['inc_node_purity'].to_dict()
        }

    return summary
