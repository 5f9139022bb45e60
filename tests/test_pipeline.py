"""
Test Suite for the Main Pipeline
================================

End-to-end run of main.py on a small synthetic day.csv.
"""

import json
import logging

import pytest
import yaml

import main


@pytest.fixture
def small_config(tmp_path):
    config = {
        'features': {
            'target': 'cnt',
            'numeric': ['holiday', 'workingday', 'temp', 'atemp', 'hum', 'windspeed'],
            'categorical': ['season', 'weathersit'],
        },
        'split': {'train_fraction': 0.75, 'seed': 1},
        'tuning': {'folds': 3, 'levels': 1, 'cache_dir': str(tmp_path / 'models' / 'tuning')},
        'models': {
            'nearest_neighbors': {'n_neighbors': 5},
            'random_forest': {'space': {
                'max_features': {'range': [3, 3]},
                'n_estimators': {'range': [15, 15]},
                'min_samples_split': {'range': [2, 2]},
            }},
            'boosted_trees': {'space': {
                'max_features': {'range': [3, 3]},
                'n_estimators': {'range': [20, 20]},
                'learning_rate': {'range': [-1, -1], 'log_scale': True},
            }},
        },
        'evaluation': {'ranking_basis': 'cv_rmse'},
        'output': {
            'figures_path': str(tmp_path / 'reports' / 'figures'),
            'reports_path': str(tmp_path / 'reports'),
            'model_path': str(tmp_path / 'models' / 'best_model.joblib'),
        },
        'logging': {'level': 'INFO', 'log_dir': str(tmp_path / 'logs')},
    }
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump(config))
    return path


def test_full_pipeline(daily_csv, small_config, tmp_path):
    results = main.run_full_pipeline(str(daily_csv), str(small_config))

    evaluation = results['evaluation']
    assert len(evaluation['ranking']) == 4
    assert (tmp_path / 'models' / 'best_model.joblib').exists()
    assert (tmp_path / 'reports' / 'figures' / '01_rentals_over_time.png').exists()
    assert (tmp_path / 'models' / 'tuning' / 'random_forest.joblib').exists()

    with open(tmp_path / 'reports' / 'metrics' / 'evaluation_metrics.json') as f:
        saved = json.load(f)
    assert saved['best_model'] == evaluation['best_model'].name


def test_single_phase_split(daily_csv, small_config):
    result = main.run_single_phase('split', str(daily_csv), str(small_config))

    assert len(result['train']) == 150
    assert len(result['folds']) == 3


def test_unknown_phase(daily_csv, small_config):
    with pytest.raises(ValueError, match="Unknown phase"):
        main.run_single_phase('predict', str(daily_csv), str(small_config))


def test_main_missing_data(tmp_path, monkeypatch):
    monkeypatch.setattr('sys.argv', ['main.py', '--data', str(tmp_path / 'missing.csv')])

    with pytest.raises(SystemExit) as exc:
        main.main()
    assert exc.value.code == 1


def test_main_reports_failure(tmp_path, small_config, monkeypatch):
    bad = tmp_path / 'day.csv'
    bad.write_text("a,b\n1,2\n")
    monkeypatch.setattr('sys.argv', ['main.py', '--data', str(bad), '--config', str(small_config)])

    assert main.main() == 1


@pytest.fixture
def restore_root_level():
    root = logging.getLogger()
    level = root.level
    yield root
    root.setLevel(level)


def test_main_verbose_sets_debug(daily_csv, small_config, restore_root_level, monkeypatch):
    monkeypatch.setattr('sys.argv', [
        'main.py', '--data', str(daily_csv), '--config', str(small_config),
        '--phase', 'split', '--verbose'
    ])

    assert main.main() == 0
    assert restore_root_level.level == logging.DEBUG


def test_main_uses_config_level(daily_csv, small_config, restore_root_level, monkeypatch):
    monkeypatch.setattr('sys.argv', [
        'main.py', '--data', str(daily_csv), '--config', str(small_config), '--phase', 'split'
    ])
    restore_root_level.setLevel(logging.WARNING)

    assert main.main() == 0
    assert restore_root_level.level == logging.INFO
