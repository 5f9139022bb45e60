"""
Test Suite for Evaluation Module
================================

Tests for metrics, model ranking and the held-out test report.
"""

import json

import numpy as np
import pandas as pd
import pytest

from bikeshare.evaluation import (
    calculate_metrics,
    check_ranking_consistency,
    compare_models,
    evaluate_models,
    evaluate_on_test,
    rank_models,
)
from bikeshare.model import LinearRegressionTrainer, NearestNeighborsTrainer, RandomForestTrainer
from bikeshare.preprocessing import FeatureRecipe, make_folds, split_train_test
from bikeshare.tuning import HyperparameterRange, tune_model


class TestCalculateMetrics:
    """Tests for calculate_metrics."""

    def test_perfect_predictions(self):
        y = np.array([120.0, 340.0, 560.0, 980.0])
        metrics = calculate_metrics(y, y.copy())

        assert metrics['rmse'] == 0.0
        assert metrics['rsq'] == 1.0
        assert metrics['mae'] == 0.0
        assert metrics['n_samples'] == 4

    def test_known_values(self):
        y_true = np.array([1.0, 2.0, 3.0, 4.0])
        y_pred = np.array([2.0, 2.0, 3.0, 2.0])

        metrics = calculate_metrics(y_true, y_pred)

        assert metrics['rmse'] == pytest.approx(np.sqrt(5 / 4))
        assert metrics['mae'] == pytest.approx(3 / 4)
        assert metrics['rsq'] == pytest.approx(1 - 5 / 5)

    def test_accepts_series(self):
        metrics = calculate_metrics(pd.Series([1, 2, 3]), [1.5, 2.5, 3.5])

        assert metrics['rmse'] == pytest.approx(0.5)

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="mismatch"):
            calculate_metrics([1, 2, 3], [1, 2])

    def test_empty(self):
        with pytest.raises(ValueError, match="empty"):
            calculate_metrics([], [])


def comparison_table():
    return pd.DataFrame({
        'model': ['linear_regression', 'nearest_neighbors', 'random_forest', 'boosted_trees'],
        'train_rmse': [900.0, 0.0, 300.0, 500.0],
        'train_rsq': [0.7, 1.0, 0.95, 0.9],
        'train_mae': [700.0, 0.0, 200.0, 400.0],
        'cv_rmse': [950.0, 1100.0, 700.0, 700.0],
        'cv_rmse_std': [50.0, 80.0, 40.0, 45.0],
        'n_candidates': [1, 1, 27, 27],
        'best_params': ['{}', '{}', '{}', '{}'],
    })


class TestRanking:
    """Tests for rank_models and check_ranking_consistency."""

    def test_rank_by_cv(self):
        ranking = rank_models(comparison_table(), 'cv_rmse')

        # tie between the forests keeps report order
        assert ranking['model'].tolist() == [
            'random_forest', 'boosted_trees', 'linear_regression', 'nearest_neighbors'
        ]
        assert ranking['rank'].tolist() == [1, 2, 3, 4]

    def test_rank_by_training(self):
        ranking = rank_models(comparison_table(), 'train_rmse')

        assert ranking.loc[0, 'model'] == 'nearest_neighbors'

    def test_unknown_basis(self):
        with pytest.raises(ValueError, match="Unknown ranking basis"):
            rank_models(comparison_table(), 'test_rmse')

    def test_inconsistent_bases_flagged(self, caplog):
        result = check_ranking_consistency(comparison_table())

        assert not result['consistent']
        assert result['winners'] == {'cv_rmse': 'random_forest', 'train_rmse': 'nearest_neighbors'}
        assert "Ranking basis changes the winner" in caplog.text

    def test_consistent_bases(self):
        table = comparison_table()
        table.loc[1, 'train_rmse'] = 1000.0
        table.loc[2, 'train_rmse'] = 100.0

        assert check_ranking_consistency(table)['consistent']


class TestLinearVersusNearestNeighbor:
    """Noiseless linear data: 20 training rows, 5 interpolated rows."""

    @pytest.fixture
    def data(self):
        x_train = np.arange(1, 21, dtype=float)
        x_new = np.array([2.3, 6.3, 10.3, 14.3, 18.3])
        train = pd.DataFrame({'x': x_train, 'y': 3 * x_train + 2})
        new = pd.DataFrame({'x': x_new, 'y': 3 * x_new + 2})
        recipe = FeatureRecipe(target='y', numeric_predictors=['x'], categorical_predictors=[])
        return train, new, recipe

    def test_linear_regression(self, data):
        train, new, recipe = data
        fitted = LinearRegressionTrainer().fit(train, recipe)

        assert calculate_metrics(train['y'], fitted.predict(train))['rmse'] == pytest.approx(0, abs=1e-8)
        assert evaluate_on_test(fitted, new)['metrics']['rmse'] == pytest.approx(0, abs=1e-8)

    def test_one_nearest_neighbor(self, data):
        train, new, recipe = data
        fitted = NearestNeighborsTrainer(n_neighbors=1).fit(train, recipe)

        assert calculate_metrics(train['y'], fitted.predict(train))['rmse'] == pytest.approx(0, abs=1e-8)
        # each new point takes the target of x - 0.3
        assert evaluate_on_test(fitted, new)['metrics']['rmse'] == pytest.approx(0.9)


@pytest.fixture
def tuned_results(daily_df, recipe):
    train, test = split_train_test(daily_df, seed=42)
    folds = make_folds(train, k=3, seed=0)
    forest = RandomForestTrainer(
        random_state=0,
        param_space=[
            HyperparameterRange('max_features', 3, 6),
            HyperparameterRange('n_estimators', 20, 20),
            HyperparameterRange('min_samples_split', 2, 2),
        ]
    )

    results = []
    for trainer in [LinearRegressionTrainer(), NearestNeighborsTrainer(n_neighbors=5), forest]:
        fitted, tuning = tune_model(trainer, train, recipe, folds, levels=2)
        results.append({'name': trainer.name, 'trainer': trainer, 'model': fitted, 'tuning': tuning})
    return results, train, test


def test_compare_models(tuned_results):
    results, train, _ = tuned_results
    table = compare_models(results, train)

    assert table['model'].tolist() == ['linear_regression', 'nearest_neighbors', 'random_forest']
    assert table.loc[2, 'n_candidates'] == 2
    assert (table['cv_rmse'] > 0).all()
    assert json.loads(table.loc[0, 'best_params']) == {}


def test_evaluate_models(tuned_results, tmp_path):
    results, train, test = tuned_results

    evaluation = evaluate_models(results, train, test, basis='cv_rmse', output_dir=str(tmp_path))

    best_name = evaluation['ranking'].loc[0, 'model']
    assert evaluation['best_model'].name == best_name
    assert evaluation['test']['metrics']['n_samples'] == len(test)
    assert (tmp_path / "metrics" / "model_comparison.csv").exists()
    assert (tmp_path / "figures" / "eval_actual_vs_predicted.png").exists()
    assert (tmp_path / "figures" / "tuning_random_forest.png").exists()
    assert not (tmp_path / "figures" / "tuning_linear_regression.png").exists()

    with open(tmp_path / "metrics" / "evaluation_metrics.json") as f:
        saved = json.load(f)
    assert saved['best_model'] == best_name
    assert saved['test_metrics']['rmse'] == pytest.approx(evaluation['test']['metrics']['rmse'])
    assert len(saved['models']) == 3
    assert [t['model_name'] for t in saved['tuning']] == ['linear_regression', 'nearest_neighbors', 'random_forest']
    assert saved['tuning'][2]['n_candidates'] == 2
