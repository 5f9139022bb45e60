"""
Hyperparameter Tuning Module
============================

Regular hyperparameter grids and cross-validated grid search.

Features:
    - Fixed-resolution grids over declared ranges (linear or log10 scale)
    - Degenerate grids rejected when the grid is built, not when fitting
    - Grid search with scikit-learn GridSearchCV over precomputed folds,
      the feature recipe re-fitted inside every fold
    - Refit of the selected configuration on the full training set
    - Tuning results cached per model family with joblib
"""

import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import joblib
from sklearn.base import clone
from sklearn.model_selection import GridSearchCV

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HyperparameterRange:
    """
    Declared range of one hyperparameter.

    For log-scale ranges `lower` and `upper` are log10 exponents, so
    HyperparameterRange('learning_rate', -3, -1, log_scale=True, integer=False)
    spans 0.001 to 0.1.
    """

    name: str
    lower: float
    upper: float
    log_scale: bool = False
    integer: bool = True

    def values(self, levels: int) -> List[Union[int, float]]:
        if levels < 1:
            raise ValueError(f"Grid levels must be at least 1, got {levels} for '{self.name}'")
        if self.lower > self.upper:
            raise ValueError(
                f"Invalid range for '{self.name}': lower {self.lower} > upper {self.upper}"
            )

        points = np.linspace(self.lower, self.upper, levels) if levels > 1 else np.array([self.lower])
        if self.log_scale:
            points = 10.0 ** points

        if self.integer:
            out = []
            for value in np.round(points).astype(int):
                if int(value) not in out:
                    out.append(int(value))
            return out
        return [float(value) for value in points]


def _check_value(name: str, value: Any, n_features: int) -> None:
    if name == 'max_features' and not 1 <= value <= n_features:
        raise ValueError(
            f"max_features={value} is outside [1, {n_features}]: "
            f"cannot sample more predictors than the recipe produces"
        )
    if name == 'n_estimators' and value < 1:
        raise ValueError(f"n_estimators must be at least 1, got {value}")
    if name == 'min_samples_split' and value < 2:
        raise ValueError(f"min_samples_split must be at least 2, got {value}")
    if name == 'learning_rate' and not 0 < value <= 1:
        raise ValueError(f"learning_rate must be in (0, 1], got {value}")
    if name == 'n_neighbors' and value < 1:
        raise ValueError(f"n_neighbors must be at least 1, got {value}")


def build_grid(
    param_space: List[HyperparameterRange],
    levels: Union[int, Dict[str, int]],
    n_features: int
) -> List[Dict[str, Any]]:
    """
    Build the Cartesian grid over the declared ranges.

    Args:
        param_space: Hyperparameter ranges
        levels: Points per range, either one number or a mapping by name
        n_features: Number of columns the feature recipe produces

    Returns:
        List of hyperparameter dictionaries in enumeration order. An empty
        parameter space yields a single empty configuration.

    Raises:
        ValueError: If any grid point would give a degenerate model
    """
    if not param_space:
        return [{}]

    value_lists = []
    for param in param_space:
        n_levels = levels.get(param.name, 3) if isinstance(levels, dict) else levels
        values = param.values(n_levels)
        for value in values:
            _check_value(param.name, value, n_features)
        value_lists.append(values)

    names = [param.name for param in param_space]
    return [dict(zip(names, combo)) for combo in itertools.product(*value_lists)]


@dataclass
class TuningResult:
    """Cross-validated RMSE of every grid point for one model family."""

    model_name: str
    cv_results: pd.DataFrame
    best_params: Dict[str, Any]
    best_rmse: float
    best_rmse_std: float
    n_folds: int
    param_names: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'model_name': self.model_name,
            'best_params': self.best_params,
            'best_rmse': self.best_rmse,
            'best_rmse_std': self.best_rmse_std,
            'n_folds': self.n_folds,
            'n_candidates': int(len(self.cv_results))
        }


def grid_search(
    trainer,
    train_df: pd.DataFrame,
    recipe,
    folds: List[Tuple[np.ndarray, np.ndarray]],
    grid: List[Dict[str, Any]],
    n_jobs: Optional[int] = None
) -> TuningResult:
    """
    Evaluate every grid point with k-fold cross-validation.

    Each point is fitted on k-1 folds and scored on the held-out fold, k times;
    the selection criterion is the mean RMSE over folds. Ties go to the
    earliest grid point. A failing fit raises instead of being scored as NaN.

    Args:
        trainer: RegressionTrainer for the model family
        train_df: Training rows
        recipe: FeatureRecipe (re-fitted inside every fold)
        folds: (train_positions, validation_positions) pairs over train_df
        grid: Hyperparameter configurations from build_grid
        n_jobs: Parallel jobs passed to GridSearchCV

    Returns:
        TuningResult
    """
    if not grid:
        raise ValueError("Grid must contain at least one configuration")

    X, y = recipe.split_xy(train_df)
    pipeline = trainer.build_pipeline(recipe)
    param_grid = [{f"model__{name}": [value] for name, value in point.items()} for point in grid]

    logger.info(
        f"Grid search for {trainer.name}: {len(grid)} candidates × {len(folds)} folds"
    )

    search = GridSearchCV(
        pipeline,
        param_grid,
        scoring='neg_root_mean_squared_error',
        cv=folds,
        refit=False,
        n_jobs=n_jobs,
        error_score='raise'
    )
    search.fit(X, y)

    results = search.cv_results_
    param_names = list(grid[0].keys())
    rows = []
    for i, params in enumerate(results['params']):
        row = {name.replace('model__', '', 1): value for name, value in params.items()}
        row['mean_rmse'] = float(-results['mean_test_score'][i])
        row['std_rmse'] = float(results['std_test_score'][i])
        for fold_idx in range(len(folds)):
            row[f'fold_{fold_idx + 1}_rmse'] = float(-results[f'split{fold_idx}_test_score'][i])
        rows.append(row)

    cv_results = pd.DataFrame(rows)
    cv_results['rank'] = cv_results['mean_rmse'].rank(method='min').astype(int)

    best_idx = int(np.argmin(cv_results['mean_rmse'].to_numpy()))
    best_params = dict(grid[best_idx])

    result = TuningResult(
        model_name=trainer.name,
        cv_results=cv_results,
        best_params=best_params,
        best_rmse=float(cv_results.loc[best_idx, 'mean_rmse']),
        best_rmse_std=float(cv_results.loc[best_idx, 'std_rmse']),
        n_folds=len(folds),
        param_names=param_names
    )

    logger.info(
        f"Best {trainer.name}: {best_params or 'default settings'} "
        f"(CV RMSE {result.best_rmse:.2f} ± {result.best_rmse_std:.2f})"
    )
    return result


class TuningCache:
    """
    joblib cache of tuning results, one file per model family.

    Each entry stores a fingerprint of everything the search depends on;
    an entry with a different fingerprint is treated as a miss.
    """

    def __init__(self, cache_dir: str = "models/tuning/", enabled: bool = True):
        self.cache_dir = Path(cache_dir)
        self.enabled = enabled

    def path_for(self, model_name: str) -> Path:
        return self.cache_dir / f"{model_name}.joblib"

    @staticmethod
    def fingerprint(trainer, train_df: pd.DataFrame, recipe, folds, grid) -> str:
        return joblib.hash((
            trainer.name,
            trainer.fixed_params,
            recipe.get_params(),
            train_df,
            [(np.asarray(tr), np.asarray(va)) for tr, va in folds],
            grid
        ))

    def load(self, model_name: str, fingerprint: str) -> Optional[TuningResult]:
        if not self.enabled:
            return None

        path = self.path_for(model_name)
        if not path.exists():
            return None

        state = joblib.load(path)
        if state.get('fingerprint') != fingerprint:
            logger.info(f"Tuning cache for {model_name} is stale; recomputing")
            return None

        logger.info(f"Loaded tuning results for {model_name} from {path}")
        return state['result']

    def save(self, model_name: str, fingerprint: str, result: TuningResult) -> None:
        if not self.enabled:
            return

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(model_name)
        joblib.dump({'fingerprint': fingerprint, 'result': result}, path)
        logger.info(f"Tuning results for {model_name} cached to {path}")


def tune_model(
    trainer,
    train_df: pd.DataFrame,
    recipe,
    folds: List[Tuple[np.ndarray, np.ndarray]],
    levels: Union[int, Dict[str, int]] = 3,
    cache: Optional[TuningCache] = None,
    n_jobs: Optional[int] = None
):
    """
    Tune one model family and refit the selected configuration.

    Args:
        trainer: RegressionTrainer for the model family
        train_df: Training rows
        recipe: FeatureRecipe
        folds: Cross-validation folds over train_df
        levels: Grid resolution
        cache: Optional tuning-result cache
        n_jobs: Parallel jobs for the grid search

    Returns:
        Tuple of (FittedModel refitted on all of train_df, TuningResult)
    """
    n_features = clone(recipe).fit(train_df).n_features_out_
    grid = trainer.grid(n_features, levels)

    result = None
    key = None
    if cache is not None:
        key = TuningCache.fingerprint(trainer, train_df, recipe, folds, grid)
        result = cache.load(trainer.name, key)

    if result is None:
        result = grid_search(trainer, train_df, recipe, folds, grid, n_jobs=n_jobs)
        if cache is not None:
            cache.save(trainer.name, key, result)

    fitted = trainer.fit(train_df, recipe, result.best_params)
    fitted.training_info['cv_rmse'] = result.best_rmse
    fitted.training_info['cv_rmse_std'] = result.best_rmse_std
    fitted.training_info['n_folds'] = result.n_folds

    return fitted, result


def tune_all_models(
    trainers: List[Any],
    prep_result: Dict[str, Any],
    config: Dict[str, Any],
    use_cache: bool = True
) -> List[Dict[str, Any]]:
    """
    Tune and refit every model family.

    Args:
        trainers: Trainers from build_trainers
        prep_result: Dictionary from preprocess_pipeline
        config: Configuration dictionary
        use_cache: Whether to read and write the tuning cache

    Returns:
        List of {'name', 'trainer', 'model', 'tuning'} dictionaries in trainer order
    """
    tuning_config = config.get('tuning', {})
    cache = TuningCache(
        tuning_config.get('cache_dir', 'models/tuning/'),
        enabled=use_cache and tuning_config.get('cache', True)
    )

    logger.info("=" * 60)
    logger.info("STARTING MODEL TUNING")
    logger.info("=" * 60)

    results = []
    for trainer in trainers:
        levels = config.get('models', {}).get(trainer.name, {}).get(
            'levels', tuning_config.get('levels', 3)
        )
        fitted, tuning = tune_model(
            trainer,
            prep_result['train'],
            prep_result['recipe'],
            prep_result['folds'],
            levels=levels,
            cache=cache,
            n_jobs=tuning_config.get('n_jobs', None)
        )
        results.append({
            'name': trainer.name,
            'trainer': trainer,
            'model': fitted,
            'tuning': tuning
        })

    logger.info("=" * 60)
    logger.info(f"TUNING COMPLETE: {len(results)} model families")
    logger.info("=" * 60)

    return results


def print_tuning_summary(result: TuningResult, top_n: int = 5) -> None:
    """
    Print the best grid points of one tuning run.

    Args:
        result: TuningResult from grid_search
        top_n: Number of grid points to show
    """
    print("\n" + "=" * 60)
    print(f"TUNING RESULTS: {result.model_name}")
    print("=" * 60)
    print(f"Candidates: {len(result.cv_results)} | Folds: {result.n_folds}")

    columns = result.param_names + ['mean_rmse', 'std_rmse', 'rank']
    top = result.cv_results.sort_values('mean_rmse', kind='mergesort').head(top_n)
    print(top[columns].to_string(index=False, float_format=lambda v: f"{v:.4g}"))

    print(f"\nSelected: {result.best_params or 'default settings'}")
    print(f"CV RMSE: {result.best_rmse:.2f} ± {result.best_rmse_std:.2f}")
    print("=" * 60 + "\n")
