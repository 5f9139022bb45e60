"""
Data Preprocessing Module
=========================

Handles the feature recipe, stratified train/test splitting and the
cross-validation folds used for hyperparameter tuning.

Functions:
    - FeatureRecipe: Fit-once predictor selection and indicator encoding
    - make_strata: Bin the target into quantile strata
    - split_train_test: Stratified, seeded train/test split
    - make_folds: Stratified, seeded k-fold partitions of the training set
"""

import logging
from typing import Dict, Any, Tuple, Optional, List

import pandas as pd
import numpy as np
from sklearn.base import BaseEstimator, TransformerMixin
from sklearn.model_selection import train_test_split, StratifiedKFold, KFold
from sklearn.preprocessing import OneHotEncoder

from .data_loader import TARGET_COLUMN, LEAKAGE_COLUMNS

logger = logging.getLogger(__name__)

DEFAULT_NUMERIC_PREDICTORS = ["yr", "holiday", "workingday", "temp", "atemp", "hum", "windspeed"]
DEFAULT_CATEGORICAL_PREDICTORS = ["season", "mnth", "weekday", "weathersit"]

Fold = Tuple[np.ndarray, np.ndarray]


class FeatureRecipe(BaseEstimator, TransformerMixin):
    """
    Declared feature transformation for the rental count model.

    Selects the predictor columns, passes numeric predictors through and
    turns every categorical predictor into indicator columns (one per level,
    the first sorted level being the reference). Levels are learned once in
    fit() and reused for every later transform(); a level that was not seen
    during fit is an error.
    """

    def __init__(
        self,
        target: str = TARGET_COLUMN,
        numeric_predictors: Optional[List[str]] = None,
        categorical_predictors: Optional[List[str]] = None
    ):
        self.target = target
        self.numeric_predictors = numeric_predictors
        self.categorical_predictors = categorical_predictors

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'FeatureRecipe':
        """Build a recipe from the `features` section of the configuration."""
        feature_config = config.get('features', {})
        return cls(
            target=feature_config.get('target', TARGET_COLUMN),
            numeric_predictors=feature_config.get('numeric', DEFAULT_NUMERIC_PREDICTORS),
            categorical_predictors=feature_config.get('categorical', DEFAULT_CATEGORICAL_PREDICTORS)
        )

    @property
    def predictors(self) -> List[str]:
        return list(self.numeric_predictors or []) + list(self.categorical_predictors or [])

    def _check_input(self, X: pd.DataFrame) -> None:
        if not self.predictors:
            raise ValueError("FeatureRecipe needs at least one predictor column")

        leaking = [col for col in self.predictors
                   if col == self.target or col in LEAKAGE_COLUMNS]
        if leaking:
            raise ValueError(
                f"Predictors {leaking} leak the target '{self.target}' "
                f"and cannot be used for modelling"
            )

        missing = [col for col in self.predictors if col not in X.columns]
        if missing:
            raise ValueError(f"Predictor columns not found in data: {missing}")

        n_missing = X[self.predictors].isnull().sum()
        if n_missing.sum() > 0:
            raise ValueError(
                f"Missing values in predictor columns: "
                f"{n_missing[n_missing > 0].to_dict()}"
            )

    def fit(self, X: pd.DataFrame, y=None) -> 'FeatureRecipe':
        """
        Learn the category levels of the categorical predictors.

        Args:
            X: Training DataFrame (may include the target and other columns)
            y: Ignored

        Returns:
            Self for method chaining
        """
        self._check_input(X)

        categorical = list(self.categorical_predictors or [])
        self.levels_ = {col: sorted(X[col].unique().tolist()) for col in categorical}

        if categorical:
            self.encoder_ = OneHotEncoder(
                categories=[self.levels_[col] for col in categorical],
                drop='first',
                handle_unknown='error',
                sparse_output=False
            )
            self.encoder_.fit(X[categorical])
            indicator_names = self.encoder_.get_feature_names_out(categorical).tolist()
        else:
            self.encoder_ = None
            indicator_names = []

        self.feature_names_out_ = list(self.numeric_predictors or []) + indicator_names
        self.n_features_out_ = len(self.feature_names_out_)

        logger.debug(
            f"Fitted recipe: {len(self.numeric_predictors or [])} numeric, "
            f"{len(categorical)} categorical -> {self.n_features_out_} features"
        )
        return self

    def transform(self, X: pd.DataFrame) -> pd.DataFrame:
        """
        Apply the fitted recipe.

        Args:
            X: DataFrame containing at least the predictor columns

        Returns:
            DataFrame of numeric predictors followed by indicator columns

        Raises:
            ValueError: If not fitted, columns are missing, values are missing,
                or a categorical level was not seen during fit
        """
        if not hasattr(self, 'feature_names_out_'):
            raise ValueError("FeatureRecipe must be fitted before transform. Call fit() first.")

        self._check_input(X)

        categorical = list(self.categorical_predictors or [])
        unseen = {}
        for col in categorical:
            new_levels = sorted(set(X[col].unique().tolist()) - set(self.levels_[col]))
            if new_levels:
                unseen[col] = new_levels
        if unseen:
            raise ValueError(
                f"Unseen categorical levels at transform time: {unseen}. "
                f"Known levels: { {col: self.levels_[col] for col in unseen} }"
            )

        numeric = X[list(self.numeric_predictors or [])]

        if self.encoder_ is None:
            return numeric.copy()

        indicators = pd.DataFrame(
            self.encoder_.transform(X[categorical]),
            columns=self.feature_names_out_[len(numeric.columns):],
            index=X.index
        )
        return pd.concat([numeric, indicators], axis=1)

    def get_feature_names_out(self, input_features=None) -> np.ndarray:
        if not hasattr(self, 'feature_names_out_'):
            raise ValueError("FeatureRecipe must be fitted first.")
        return np.asarray(self.feature_names_out_, dtype=object)

    def split_xy(self, df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series]:
        """Return the predictor frame and the target series."""
        if self.target not in df.columns:
            raise ValueError(f"Target column '{self.target}' not found in data")
        return df[self.predictors], df[self.target]


def make_strata(
    y: pd.Series,
    breaks: int = 4,
    pool: float = 0.1
) -> Optional[np.ndarray]:
    """
    Bin a target into strata for stratified sampling.

    Numeric targets are cut at quantiles. The number of bins is reduced
    until every stratum holds at least `pool` of the rows (and at least 2);
    None means no usable stratification exists.

    Args:
        y: Target values
        breaks: Maximum number of quantile bins
        pool: Minimum fraction of rows per stratum

    Returns:
        Integer stratum label per row, or None
    """
    y = pd.Series(y).reset_index(drop=True)
    n = len(y)
    min_size = max(2, int(np.ceil(pool * n)))

    if y.nunique() < 2:
        return None

    if not pd.api.types.is_numeric_dtype(y):
        counts = y.value_counts()
        if len(counts) > 1 and counts.min() >= min_size:
            return pd.factorize(y, sort=True)[0]
        return None

    for n_bins in range(breaks, 1, -1):
        strata = pd.qcut(y, q=n_bins, labels=False, duplicates='drop')
        counts = strata.value_counts()
        if len(counts) > 1 and counts.min() >= min_size:
            return strata.to_numpy(dtype=int)

    return None


def split_train_test(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    prop: float = 0.75,
    seed: int = 42,
    breaks: int = 4,
    pool: float = 0.1
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split rows into disjoint train and test sets, stratified on the binned target.

    The same seed always produces the same partition. Row order and index
    labels of the input are kept within each subset.

    Args:
        df: Full dataset
        target: Column used for stratification
        prop: Fraction of rows assigned to training, in (0, 1)
        seed: Random seed
        breaks: Maximum number of target strata
        pool: Minimum fraction of rows per stratum

    Returns:
        Tuple of (train, test)
    """
    if not 0 < prop < 1:
        raise ValueError(f"Training fraction must be in (0, 1), got {prop}")

    n = len(df)
    n_train = int(np.floor(prop * n))
    n_test = n - n_train
    if n_train < 1 or n_test < 1:
        raise ValueError(
            f"Cannot split {n} rows with training fraction {prop}: one subset would be empty"
        )

    strata = make_strata(df[target], breaks=breaks, pool=pool)
    if strata is not None:
        n_strata = len(np.unique(strata))
        if n_train < n_strata or n_test < n_strata:
            strata = None
    if strata is None:
        logger.warning("Target cannot be stratified for this split; using simple random sampling")

    positions = np.arange(n)
    train_pos, test_pos = train_test_split(
        positions,
        train_size=n_train,
        test_size=n_test,
        random_state=seed,
        stratify=strata
    )

    train = df.iloc[np.sort(train_pos)]
    test = df.iloc[np.sort(test_pos)]

    logger.info(f"Train/Test split: {len(train)} train rows, {len(test)} test rows (seed={seed})")
    return train, test


def make_folds(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    k: int = 10,
    seed: int = 42,
    breaks: int = 4,
    pool: float = 0.1
) -> List[Fold]:
    """
    Partition a dataset into k cross-validation folds stratified on the target.

    Args:
        df: Training set to partition
        target: Column used for stratification
        k: Number of folds
        seed: Random seed
        breaks: Maximum number of target strata
        pool: Minimum fraction of rows per stratum

    Returns:
        List of k (train_positions, validation_positions) pairs. Every row
        position appears in exactly one validation set.
    """
    n = len(df)
    if k < 2:
        raise ValueError(f"Number of folds must be at least 2, got {k}")
    if k > n:
        raise ValueError(f"Cannot make {k} folds from {n} rows")

    strata = make_strata(df[target], breaks=breaks, pool=pool)
    if strata is not None and np.bincount(strata).min() < k:
        strata = None

    positions = np.arange(n)
    if strata is None:
        logger.warning("Target cannot be stratified into %d folds; using plain k-fold", k)
        splitter = KFold(n_splits=k, shuffle=True, random_state=seed)
        folds = list(splitter.split(positions))
    else:
        splitter = StratifiedKFold(n_splits=k, shuffle=True, random_state=seed)
        folds = list(splitter.split(positions, strata))

    logger.info(f"Created {k} cross-validation folds over {n} rows")
    return folds


def preprocess_pipeline(
    df: pd.DataFrame,
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Split the dataset, create the tuning folds and fit the feature recipe.

    Args:
        df: Validated dataset
        config: Configuration dictionary

    Returns:
        Dictionary containing:
            - train, test: Split datasets
            - folds: Cross-validation folds over the training set
            - recipe: FeatureRecipe fitted on the training set
            - feature_names: Columns produced by the recipe
    """
    logger.info("=" * 60)
    logger.info("STARTING DATA PREPROCESSING")
    logger.info("=" * 60)

    split_config = config.get('split', {})
    tuning_config = config.get('tuning', {})
    recipe = FeatureRecipe.from_config(config)

    seed = split_config.get('seed', 42)
    breaks = split_config.get('strata_breaks', 4)
    pool = split_config.get('strata_pool', 0.1)

    train, test = split_train_test(
        df,
        target=recipe.target,
        prop=split_config.get('train_fraction', 0.75),
        seed=seed,
        breaks=breaks,
        pool=pool
    )

    folds = make_folds(
        train,
        target=recipe.target,
        k=tuning_config.get('folds', 10),
        seed=tuning_config.get('seed', seed),
        breaks=breaks,
        pool=pool
    )

    recipe.fit(train)

    result = {
        'train': train,
        'test': test,
        'folds': folds,
        'recipe': recipe,
        'feature_names': list(recipe.feature_names_out_)
    }

    logger.info("=" * 60)
    logger.info("PREPROCESSING COMPLETE")
    logger.info(f"  Training rows: {len(train)}")
    logger.info(f"  Test rows: {len(test)}")
    logger.info(f"  Folds: {len(folds)}")
    logger.info(f"  Features after recipe: {recipe.n_features_out_}")
    logger.info("=" * 60)

    return result


def print_preprocessing_summary(result: Dict[str, Any]) -> None:
    """
    Print a summary of the preprocessing results.

    Args:
        result: Dictionary from preprocess_pipeline
    """
    recipe = result['recipe']
    target = recipe.target

    print("\n" + "=" * 50)
    print("PREPROCESSING SUMMARY")
    print("=" * 50)
    print(f"Training rows: {len(result['train'])}")
    print(f"Test rows: {len(result['test'])}")
    print(f"Cross-validation folds: {len(result['folds'])}")
    print(f"Target: {target}")
    print(f"  train mean={result['train'][target].mean():.1f}, "
          f"test mean={result['test'][target].mean():.1f}")
    print(f"\nNumeric predictors: {', '.join(recipe.numeric_predictors or [])}")
    print(f"Categorical predictors: {', '.join(recipe.categorical_predictors or [])}")
    print(f"Features after encoding: {len(result['feature_names'])}")
    print("=" * 50 + "\n")
