"""
Model Training Module
=====================

Regression trainers for daily rental counts behind one common interface.

Trainers:
    - LinearRegressionTrainer: ordinary least squares, no hyperparameters
    - NearestNeighborsTrainer: k-nearest-neighbors with a fixed neighbor count
    - RandomForestTrainer: random forest tuned over predictors per split,
      number of trees and minimum node size
    - BoostedTreesTrainer: gradient boosted trees tuned over predictors per
      split, number of trees and learning rate (log scale)

Every trainer builds a scikit-learn Pipeline whose first step is the feature
recipe, so the recipe is re-fitted on whatever data the model is fitted on.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from sklearn.base import clone
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.linear_model import LinearRegression
from sklearn.neighbors import KNeighborsRegressor
from sklearn.ensemble import RandomForestRegressor, GradientBoostingRegressor

from .preprocessing import FeatureRecipe
from .tuning import HyperparameterRange, build_grid

logger = logging.getLogger(__name__)


class FittedModel:
    """
    A fitted recipe + estimator pipeline for one model family.

    Immutable once created by RegressionTrainer.fit(); only prediction,
    inspection and persistence are offered.
    """

    def __init__(
        self,
        name: str,
        pipeline: Pipeline,
        params: Dict[str, Any],
        training_info: Optional[Dict[str, Any]] = None
    ):
        self.name = name
        self.pipeline = pipeline
        self.params = dict(params)
        self.training_info = training_info or {}

    @property
    def recipe(self) -> FeatureRecipe:
        return self.pipeline.named_steps['recipe']

    @property
    def estimator(self):
        return self.pipeline.named_steps['model']

    @property
    def feature_names(self) -> List[str]:
        return list(self.recipe.feature_names_out_)

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """
        Predict rental counts for the rows of `data`.

        Raises:
            ValueError: If predictors are missing or contain unseen levels
        """
        return np.asarray(self.pipeline.predict(data), dtype=float)

    def get_feature_importances(self) -> Optional[pd.Series]:
        """Impurity importances for tree ensembles, absolute coefficients for linear models."""
        estimator = self.estimator
        if hasattr(estimator, 'feature_importances_'):
            values = estimator.feature_importances_
        elif hasattr(estimator, 'coef_'):
            values = np.abs(np.ravel(estimator.coef_))
        else:
            return None
        return pd.Series(values, index=self.feature_names).sort_values(ascending=False)

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        state = {
            'name': self.name,
            'pipeline': self.pipeline,
            'params': self.params,
            'training_info': self.training_info
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'FittedModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded FittedModel instance
        """
        state = joblib.load(filepath)
        model = cls(
            name=state['name'],
            pipeline=state['pipeline'],
            params=state['params'],
            training_info=state['training_info']
        )
        logger.info(f"Model loaded from {filepath}")
        return model

    def __repr__(self) -> str:
        return f"FittedModel(name={self.name!r}, params={self.params!r})"


class RegressionTrainer:
    """
    Common interface of the four model families.

    Subclasses set `name`/`label`, declare their tunable `param_space` and
    implement build_estimator().
    """

    name = "base"
    label = "Base"
    scale_features = False

    def __init__(
        self,
        param_space: Optional[List[HyperparameterRange]] = None,
        fixed_params: Optional[Dict[str, Any]] = None
    ):
        self.param_space = list(param_space) if param_space is not None else self.default_param_space()
        self.fixed_params = dict(fixed_params or {})

    def default_param_space(self) -> List[HyperparameterRange]:
        return []

    def build_estimator(self, **params):
        raise NotImplementedError

    def build_pipeline(self, recipe: FeatureRecipe, **params) -> Pipeline:
        """Chain an unfitted copy of the recipe with the estimator."""
        estimator_params = {**self.fixed_params, **params}
        steps = [('recipe', clone(recipe))]
        if self.scale_features:
            steps.append(('scale', StandardScaler()))
        steps.append(('model', self.build_estimator(**estimator_params)))
        return Pipeline(steps)

    def grid(self, n_features: int, levels: Any = 3) -> List[Dict[str, Any]]:
        """Regular grid over the declared hyperparameter ranges."""
        return build_grid(self.param_space, levels, n_features)

    def fit(
        self,
        training_data: pd.DataFrame,
        recipe: FeatureRecipe,
        hyperparameters: Optional[Dict[str, Any]] = None
    ) -> FittedModel:
        """
        Fit recipe and estimator on the training data.

        Args:
            training_data: Rows with predictors and target
            recipe: Feature recipe (fitted or not; an unfitted copy is used)
            hyperparameters: Values for the tunable parameters

        Returns:
            FittedModel
        """
        hyperparameters = dict(hyperparameters or {})
        start_time = datetime.now()

        X, y = recipe.split_xy(training_data)
        pipeline = self.build_pipeline(recipe, **hyperparameters)

        logger.info(f"Fitting {self.label} on {len(X)} rows with {hyperparameters or 'default settings'}")
        pipeline.fit(X, y)

        end_time = datetime.now()
        training_info = {
            'training_duration_seconds': (end_time - start_time).total_seconds(),
            'n_samples': int(len(X)),
            'n_features': int(pipeline.named_steps['recipe'].n_features_out_),
            'trained_at': end_time.isoformat(),
            'fixed_params': dict(self.fixed_params)
        }

        return FittedModel(self.name, pipeline, hyperparameters, training_info)

    def predict(self, fitted_model: FittedModel, data: pd.DataFrame) -> np.ndarray:
        return fitted_model.predict(data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(fixed_params={self.fixed_params!r})"


class LinearRegressionTrainer(RegressionTrainer):
    name = "linear_regression"
    label = "Linear Regression"

    def build_estimator(self, **params):
        return LinearRegression(**params)


class NearestNeighborsTrainer(RegressionTrainer):
    """
    k-NN regression on standardised predictors.

    The neighbor count is a fixed setting (`n_neighbors`, default 5), not tuned.
    """

    name = "nearest_neighbors"
    label = "K-Nearest Neighbors"
    scale_features = True

    def __init__(self, n_neighbors: int = 5, weights: str = 'uniform', **kwargs):
        super().__init__(**kwargs)
        if 'n_neighbors' in self.fixed_params:
            raise ValueError("Set the neighbor count with n_neighbors, not in fixed_params")
        if n_neighbors < 1:
            raise ValueError(f"n_neighbors must be at least 1, got {n_neighbors}")
        self.fixed_params['n_neighbors'] = n_neighbors
        self.fixed_params.setdefault('weights', weights)

    def build_estimator(self, **params):
        return KNeighborsRegressor(**params)


class RandomForestTrainer(RegressionTrainer):
    name = "random_forest"
    label = "Random Forest"

    def __init__(self, random_state: int = 42, n_jobs: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.fixed_params.setdefault('random_state', random_state)
        self.fixed_params.setdefault('n_jobs', n_jobs)

    def default_param_space(self) -> List[HyperparameterRange]:
        return [
            HyperparameterRange('max_features', 1, 10),
            HyperparameterRange('n_estimators', 100, 500),
            HyperparameterRange('min_samples_split', 2, 40),
        ]

    def build_estimator(self, **params):
        return RandomForestRegressor(**params)


class BoostedTreesTrainer(RegressionTrainer):
    name = "boosted_trees"
    label = "Boosted Trees"

    def __init__(self, random_state: int = 42, **kwargs):
        super().__init__(**kwargs)
        self.fixed_params.setdefault('random_state', random_state)

    def default_param_space(self) -> List[HyperparameterRange]:
        return [
            HyperparameterRange('max_features', 1, 10),
            HyperparameterRange('n_estimators', 100, 500),
            HyperparameterRange('learning_rate', -3, -1, log_scale=True, integer=False),
        ]

    def build_estimator(self, **params):
        return GradientBoostingRegressor(**params)


TRAINER_CLASSES = {
    cls.name: cls
    for cls in (LinearRegressionTrainer, NearestNeighborsTrainer, RandomForestTrainer, BoostedTreesTrainer)
}


def _ranges_from_config(space_config: Dict[str, Any]) -> List[HyperparameterRange]:
    ranges = []
    for param_name, spec in space_config.items():
        ranges.append(HyperparameterRange(
            param_name,
            spec['range'][0],
            spec['range'][1],
            log_scale=spec.get('log_scale', False),
            integer=spec.get('integer', not spec.get('log_scale', False))
        ))
    return ranges


def build_trainers(config: Dict[str, Any]) -> List[RegressionTrainer]:
    """
    Create the trainers listed in the `models` configuration section.

    Families missing from the config use their defaults; a family can be
    switched off with `enabled: false`.

    Args:
        config: Configuration dictionary

    Returns:
        Trainers in report order
    """
    models_config = config.get('models', {})
    seed = config.get('split', {}).get('seed', 42)
    n_jobs = config.get('tuning', {}).get('n_jobs', None)

    trainers = []
    for name, cls in TRAINER_CLASSES.items():
        model_config = models_config.get(name, {}) or {}
        if not model_config.get('enabled', True):
            logger.info(f"Skipping disabled model family: {name}")
            continue

        kwargs = {'fixed_params': model_config.get('fixed', {})}
        if 'space' in model_config:
            kwargs['param_space'] = _ranges_from_config(model_config['space'])

        if cls is NearestNeighborsTrainer:
            kwargs['n_neighbors'] = model_config.get('n_neighbors', 5)
            kwargs['weights'] = model_config.get('weights', 'uniform')
        elif cls is RandomForestTrainer:
            kwargs['random_state'] = seed
            kwargs['n_jobs'] = n_jobs
        elif cls is BoostedTreesTrainer:
            kwargs['random_state'] = seed

        trainers.append(cls(**kwargs))

    if not trainers:
        raise ValueError("No model families enabled in configuration")

    return trainers


def print_model_summary(model: FittedModel, top_n: int = 10) -> None:
    """
    Print a summary of a fitted model.

    Args:
        model: Fitted model instance
        top_n: Number of feature importances to show
    """
    print("\n" + "=" * 50)
    print(f"MODEL SUMMARY: {model.name}")
    print("=" * 50)
    print(f"Estimator: {type(model.estimator).__name__}")
    print(f"Number of input features: {len(model.feature_names)}")

    if model.params:
        print("\nHyperparameters:")
        for key, value in model.params.items():
            print(f"  - {key}: {value}")

    if model.training_info:
        print("\nTraining Info:")
        print(f"  - Duration: {model.training_info.get('training_duration_seconds', 0.0):.2f}s")
        print(f"  - Samples: {model.training_info.get('n_samples', 'N/A')}")
        if 'cv_rmse' in model.training_info:
            print(f"  - CV RMSE: {model.training_info['cv_rmse']:.2f}")

    importances = model.get_feature_importances()
    if importances is not None:
        print(f"\nTop {min(top_n, len(importances))} features:")
        for feature, value in importances.head(top_n).items():
            print(f"  - {feature}: {value:.4f}")

    print("=" * 50 + "\n")
