#!/usr/bin/env python3
"""
Bike Rental Model Comparison - Main Pipeline
============================================

Orchestrates the analysis of daily bike rental counts.

Phases:
    1. EDA - Descriptive figures of rentals and their drivers
    2. Split - Stratified train/test split, folds and feature recipe
    3. Tune - Cross-validated grid search for each model family
    4. Evaluate - Rank families and score the best one on the test set

Usage:
    # Run complete pipeline
    python main.py --data data/raw/day.csv

    # Run specific phase
    python main.py --data data/raw/day.csv --phase eda

    # Ignore cached tuning results
    python main.py --data data/raw/day.csv --no-cache
"""

import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Dict, Any, Optional

import pandas as pd

from bikeshare.data_loader import load_config, load_data, validate_data, print_data_summary
from bikeshare.eda import generate_eda_report, print_correlation_insights
from bikeshare.preprocessing import preprocess_pipeline, print_preprocessing_summary
from bikeshare.model import build_trainers, print_model_summary
from bikeshare.tuning import tune_all_models, print_tuning_summary
from bikeshare.evaluation import evaluate_models, print_comparison_report, print_evaluation_report


def setup_logging(level: str = "INFO", log_dir: str = "logs/") -> None:
    """Configure logging for the pipeline."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, level.upper())
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(
                Path(log_dir) / f'pipeline_{datetime.now().strftime("%Y%m%d_%H%M%S")}.log'
            )
        ]
    )
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(log_level)


def configure_logging(config: Dict[str, Any], level: Optional[str] = None) -> None:
    """Set up logging from the config, letting an explicit level win."""
    log_config = config.get('logging', {})
    setup_logging(level or log_config.get('level', 'INFO'),
                  log_config.get('log_dir', 'logs/'))


def run_eda(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 1: Exploratory Data Analysis.

    Args:
        df: Validated data
        config: Configuration dictionary

    Returns:
        EDA report dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 1: EXPLORATORY DATA ANALYSIS")
    print("=" * 70)

    output_dir = config.get('output', {}).get('figures_path', 'reports/figures/')
    target = config.get('features', {}).get('target', 'cnt')

    report = generate_eda_report(df, target=target, output_dir=output_dir, show_plots=False)

    corr_df = pd.DataFrame(report["correlation_matrix"])
    print_correlation_insights(corr_df, target=target)

    print(f"\n✓ EDA complete. {len(report['figures'])} figures saved to {output_dir}")

    return report


def run_split(df: pd.DataFrame, config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Execute Phase 2: split, folds and feature recipe.

    Args:
        df: Validated data
        config: Configuration dictionary

    Returns:
        Preprocessing result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 2: TRAIN/TEST SPLIT AND FEATURE RECIPE")
    print("=" * 70)

    result = preprocess_pipeline(df, config)
    print_preprocessing_summary(result)

    return result


def run_tuning(
    prep_result: Dict[str, Any],
    config: Dict[str, Any],
    use_cache: bool = True
) -> list:
    """
    Execute Phase 3: tune and refit every model family.

    Args:
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary
        use_cache: Whether to reuse cached tuning results

    Returns:
        List of tuned model entries
    """
    print("\n" + "=" * 70)
    print("PHASE 3: MODEL TUNING")
    print("=" * 70)

    trainers = build_trainers(config)
    results = tune_all_models(trainers, prep_result, config, use_cache=use_cache)

    for entry in results:
        print_tuning_summary(entry['tuning'])

    return results


def run_evaluation(
    results: list,
    prep_result: Dict[str, Any],
    config: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Execute Phase 4: rank model families and evaluate the best on the test set.

    Args:
        results: Tuned model entries
        prep_result: Preprocessing result dictionary
        config: Configuration dictionary

    Returns:
        Evaluation result dictionary
    """
    print("\n" + "=" * 70)
    print("PHASE 4: MODEL EVALUATION")
    print("=" * 70)

    output_config = config.get('output', {})
    basis = config.get('evaluation', {}).get('ranking_basis', 'cv_rmse')

    evaluation = evaluate_models(
        results,
        prep_result['train'],
        prep_result['test'],
        basis=basis,
        output_dir=output_config.get('reports_path', 'reports/'),
        show_plots=False
    )

    print_comparison_report(evaluation['ranking'], basis, evaluation['consistency'])
    print_model_summary(evaluation['best_model'])
    print_evaluation_report(evaluation)

    model_path = output_config.get('model_path')
    if model_path:
        evaluation['best_model'].save(model_path)

    return evaluation


def load_validated_data(data_path: str, config: Dict[str, Any]) -> pd.DataFrame:
    """Load the CSV and fail before modelling if it is incomplete."""
    print("\n📊 Loading data...")
    df = load_data(data_path)
    print_data_summary(df)

    validate_data(df, strict=config.get('data', {}).get('strict_validation', True))
    return df


def run_full_pipeline(
    data_path: str,
    config_path: str = "config/config.yaml",
    use_cache: bool = True,
    log_level: Optional[str] = None
) -> Dict[str, Any]:
    """
    Execute the complete pipeline.

    Args:
        data_path: Path to input CSV file
        config_path: Path to configuration file
        use_cache: Whether to reuse cached tuning results
        log_level: Overrides the configured logging level

    Returns:
        Dictionary containing all phase results
    """
    print("\n" + "=" * 70)
    print("BIKE RENTAL MODEL COMPARISON")
    print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70)

    config = load_config(config_path)
    configure_logging(config, log_level)

    df = load_validated_data(data_path, config)

    results = {
        'config': config,
        'data_shape': df.shape
    }

    results['eda'] = run_eda(df, config)
    results['preprocessing'] = run_split(df, config)
    results['models'] = run_tuning(results['preprocessing'], config, use_cache=use_cache)
    results['evaluation'] = run_evaluation(results['models'], results['preprocessing'], config)

    test_metrics = results['evaluation']['test']['metrics']
    print("\n" + "=" * 70)
    print("PIPELINE COMPLETE")
    print("=" * 70)
    print(f"  • Input data: {df.shape[0]} rows × {df.shape[1]} columns")
    print(f"  • Best model: {results['evaluation']['best_model'].name}")
    print(f"  • Test RMSE: {test_metrics['rmse']:.2f}")
    print(f"  • Test R²: {test_metrics['rsq']:.4f}")
    print(f"Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 70 + "\n")

    return results


def run_single_phase(
    phase: str,
    data_path: str,
    config_path: str = "config/config.yaml",
    use_cache: bool = True,
    log_level: Optional[str] = None
) -> Any:
    """
    Execute a single phase of the pipeline (and the phases it depends on).

    Args:
        phase: Phase to run ('eda', 'split', 'tune', 'evaluate')
        data_path: Path to input CSV file
        config_path: Path to configuration file
        use_cache: Whether to reuse cached tuning results
        log_level: Overrides the configured logging level

    Returns:
        Phase result
    """
    config = load_config(config_path)
    configure_logging(config, log_level)

    df = load_validated_data(data_path, config)

    if phase == 'eda':
        return run_eda(df, config)

    elif phase == 'split':
        return run_split(df, config)

    elif phase == 'tune':
        prep_result = run_split(df, config)
        return run_tuning(prep_result, config, use_cache=use_cache)

    elif phase == 'evaluate':
        prep_result = run_split(df, config)
        models = run_tuning(prep_result, config, use_cache=use_cache)
        return run_evaluation(models, prep_result, config)

    else:
        raise ValueError(f"Unknown phase: {phase}. Choose from: eda, split, tune, evaluate")


def main():
    """Main entry point with argument parsing."""
    parser = argparse.ArgumentParser(
        description="Exploratory analysis and model comparison for daily bike rentals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --data data/raw/day.csv
  python main.py --data data/raw/day.csv --phase eda
  python main.py --data data/raw/day.csv --config config/custom.yaml --no-cache
        """
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        required=True,
        help='Path to the daily rentals CSV file'
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
        choices=['eda', 'split', 'tune', 'evaluate', 'all'],
        default='all',
        help='Phase to run (default: all)'
    )

    parser.add_argument(
        '--no-cache',
        action='store_true',
        help='Recompute grid searches instead of using cached results'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    args = parser.parse_args()

    if not Path(args.data).exists():
        print(f"Error: Data file not found: {args.data}")
        print("\nExpected the UCI bike sharing daily file (day.csv) with columns:")
        print("instant, dteday, season, yr, mnth, holiday, weekday, workingday,")
        print("weathersit, temp, atemp, hum, windspeed, casual, registered, cnt")
        sys.exit(1)

    if not Path(args.config).exists():
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)

    log_level = 'DEBUG' if args.verbose else None

    try:
        if args.phase == 'all':
            run_full_pipeline(args.data, args.config,
                              use_cache=not args.no_cache, log_level=log_level)
        else:
            run_single_phase(args.phase, args.data, args.config,
                             use_cache=not args.no_cache, log_level=log_level)

        return 0

    except Exception as e:
        logging.error(f"Pipeline failed: {e}", exc_info=True)
        print(f"\n❌ Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
