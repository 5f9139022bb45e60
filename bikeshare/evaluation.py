"""
Model Evaluation Module
=======================

Metrics, cross-family ranking and the held-out test report.

Features:
    - RMSE, R², MAE between predictions and truth
    - Comparison table of training and cross-validated RMSE per model family
    - Ranking on a chosen basis, with a warning when bases disagree
    - Single application of the best model to the untouched test set
    - Actual vs predicted, residual, comparison and tuning plots
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

logger = logging.getLogger(__name__)

RANKING_BASES = ('cv_rmse', 'train_rmse')


def calculate_metrics(
    y_true: np.ndarray,
    y_pred: np.ndarray
) -> Dict[str, Any]:
    """
    Calculate regression metrics.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values

    Returns:
        Dictionary with rmse, rsq, mae and n_samples
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()

    if y_true.shape != y_pred.shape:
        raise ValueError(
            f"Length mismatch: {len(y_true)} true values vs {len(y_pred)} predictions"
        )
    if len(y_true) == 0:
        raise ValueError("Cannot compute metrics on an empty set")

    return {
        'rmse': float(np.sqrt(mean_squared_error(y_true, y_pred))),
        'rsq': float(r2_score(y_true, y_pred)),
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'n_samples': int(len(y_true))
    }


def compare_models(
    results: List[Dict[str, Any]],
    train_df: pd.DataFrame
) -> pd.DataFrame:
    """
    Build the comparison table across model families.

    Args:
        results: Output of tune_all_models
        train_df: Training rows the models were refitted on

    Returns:
        DataFrame with one row per family in input order
    """
    rows = []
    for entry in results:
        model = entry['model']
        tuning = entry['tuning']
        target = model.recipe.target

        train_metrics = calculate_metrics(train_df[target], model.predict(train_df))
        rows.append({
            'model': entry['name'],
            'train_rmse': train_metrics['rmse'],
            'train_rsq': train_metrics['rsq'],
            'train_mae': train_metrics['mae'],
            'cv_rmse': tuning.best_rmse,
            'cv_rmse_std': tuning.best_rmse_std,
            'n_candidates': int(len(tuning.cv_results)),
            'best_params': json.dumps(tuning.best_params, default=str)
        })

    return pd.DataFrame(rows)


def rank_models(table: pd.DataFrame, basis: str = 'cv_rmse') -> pd.DataFrame:
    """
    Order model families by RMSE, lowest first.

    Ties keep the input order.

    Args:
        table: Comparison table from compare_models
        basis: 'cv_rmse' or 'train_rmse'

    Returns:
        Sorted copy of the table with a 1-based 'rank' column
    """
    if basis not in RANKING_BASES:
        raise ValueError(f"Unknown ranking basis: {basis}. Choose from: {', '.join(RANKING_BASES)}")

    ranked = table.sort_values(basis, kind='mergesort').reset_index(drop=True)
    ranked.insert(0, 'rank', np.arange(1, len(ranked) + 1))
    return ranked


def check_ranking_consistency(table: pd.DataFrame) -> Dict[str, Any]:
    """
    Compare the winners under training RMSE and cross-validated RMSE.

    Training RMSE rewards memorisation (a 1-nearest-neighbor model scores 0),
    so the two bases can pick different families.
    """
    winners = {basis: rank_models(table, basis).loc[0, 'model'] for basis in RANKING_BASES}
    consistent = len(set(winners.values())) == 1

    if not consistent:
        logger.warning(
            f"Ranking basis changes the winner: cv_rmse -> {winners['cv_rmse']}, "
            f"train_rmse -> {winners['train_rmse']}"
        )

    return {'winners': winners, 'consistent': consistent}


def evaluate_on_test(model, test_df: pd.DataFrame) -> Dict[str, Any]:
    """
    Apply a fitted model once to the held-out test set.

    Args:
        model: FittedModel
        test_df: Untouched test rows

    Returns:
        Dictionary with metrics, y_true and y_pred
    """
    target = model.recipe.target
    y_true = test_df[target].to_numpy(dtype=float)
    y_pred = model.predict(test_df)

    return {
        'model': model.name,
        'metrics': calculate_metrics(y_true, y_pred),
        'y_true': y_true,
        'y_pred': y_pred
    }


def plot_actual_vs_predicted(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    title: str = "Test set",
    figsize: Tuple[int, int] = (7, 6),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter actual against predicted rental counts.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values
        title: Title prefix
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.scatter(y_true, y_pred, alpha=0.5, s=20)

    # Perfect prediction line
    min_val = min(np.min(y_true), np.min(y_pred))
    max_val = max(np.max(y_true), np.max(y_pred))
    ax.plot([min_val, max_val], [min_val, max_val], 'r--', linewidth=2, label='Perfect')

    metrics = calculate_metrics(y_true, y_pred)

    ax.set_xlabel('Actual rentals')
    ax.set_ylabel('Predicted rentals')
    ax.set_title(f"{title}\nR²={metrics['rsq']:.4f}, RMSE={metrics['rmse']:.1f}",
                 fontsize=11, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Actual vs Predicted plot saved to {save_path}")

    return fig


def plot_residuals(
    y_true: np.ndarray,
    y_pred: np.ndarray,
    title: str = "Test set",
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Residual histogram and residuals against predictions.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values
        title: Title prefix
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    residuals = np.asarray(y_true) - np.asarray(y_pred)

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    sns.histplot(residuals, kde=True, ax=axes[0], bins=30, alpha=0.7)
    axes[0].axvline(0, color='red', linestyle='--', linewidth=2, label='Zero')
    axes[0].axvline(np.mean(residuals), color='green', linestyle='--',
                    linewidth=2, label=f'Mean: {np.mean(residuals):.1f}')
    axes[0].set_xlabel('Residual (Actual - Predicted)')
    axes[0].set_ylabel('Frequency')
    axes[0].set_title(f'Std: {np.std(residuals):.1f}', fontsize=10, fontweight='bold')
    axes[0].legend(fontsize=8)

    axes[1].scatter(y_pred, residuals, alpha=0.5, s=20)
    axes[1].axhline(0, color='red', linestyle='--', linewidth=1.5)
    axes[1].set_xlabel('Predicted rentals')
    axes[1].set_ylabel('Residual')
    axes[1].set_title('Residuals vs Predicted', fontsize=10, fontweight='bold')

    plt.suptitle(f'Residual Analysis - {title}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Residuals plot saved to {save_path}")

    return fig


def plot_model_comparison(
    table: pd.DataFrame,
    figsize: Tuple[int, int] = (12, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Bar charts of training and cross-validated RMSE per model family.

    Args:
        table: Comparison table from compare_models
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    models = table['model'].tolist()
    x = np.arange(len(models))
    width = 0.6

    fig, axes = plt.subplots(1, 2, figsize=figsize)

    axes[0].bar(x, table['cv_rmse'], width, yerr=table['cv_rmse_std'],
                color='steelblue', alpha=0.8, capsize=4)
    axes[0].set_ylabel('RMSE')
    axes[0].set_title('Cross-validated RMSE (mean ± std)', fontweight='bold')

    axes[1].bar(x, table['train_rmse'], width, color='coral', alpha=0.8)
    axes[1].set_ylabel('RMSE')
    axes[1].set_title('Training RMSE', fontweight='bold')

    for ax in axes:
        ax.set_xticks(x)
        ax.set_xticklabels(models, rotation=30, ha='right')

    plt.suptitle('Model Comparison', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Model comparison plot saved to {save_path}")

    return fig


def plot_tuning_results(
    tuning,
    figsize: Tuple[int, int] = (14, 4),
    save_path: Optional[str] = None
) -> Optional[plt.Figure]:
    """
    Mean CV RMSE against each tuned hyperparameter.

    Returns None for families without tuned hyperparameters.
    """
    if not tuning.param_names:
        return None

    cv_results = tuning.cv_results
    n_params = len(tuning.param_names)
    fig, axes = plt.subplots(1, n_params, figsize=figsize, squeeze=False)

    for idx, param in enumerate(tuning.param_names):
        ax = axes[0][idx]
        sns.stripplot(data=cv_results, x=param, y='mean_rmse', ax=ax, alpha=0.7)
        ax.set_xlabel(param)
        ax.set_ylabel('Mean CV RMSE')
        if param in tuning.best_params:
            ax.set_title(f"best: {tuning.best_params[param]:.4g}", fontsize=10, fontweight='bold')

    plt.suptitle(f'Grid Search - {tuning.model_name}', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Tuning plot saved to {save_path}")

    return fig


def evaluate_models(
    results: List[Dict[str, Any]],
    train_df: pd.DataFrame,
    test_df: pd.DataFrame,
    basis: str = 'cv_rmse',
    output_dir: str = "reports/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Rank the tuned model families and evaluate the winner on the test set.

    Args:
        results: Output of tune_all_models
        train_df: Training rows
        test_df: Untouched test rows
        basis: Ranking basis ('cv_rmse' or 'train_rmse')
        output_dir: Directory for output files
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing the comparison table, ranking, best model,
        test metrics and file paths
    """
    output_dir = Path(output_dir)
    figures_dir = output_dir / "figures"
    metrics_dir = output_dir / "metrics"

    figures_dir.mkdir(parents=True, exist_ok=True)
    metrics_dir.mkdir(parents=True, exist_ok=True)

    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    table = compare_models(results, train_df)
    ranking = rank_models(table, basis)
    consistency = check_ranking_consistency(table)

    best_name = ranking.loc[0, 'model']
    best_model = next(entry['model'] for entry in results if entry['name'] == best_name)
    logger.info(f"Best model by {basis}: {best_name}")

    test_result = evaluate_on_test(best_model, test_df)
    test_metrics = test_result['metrics']

    comparison_file = metrics_dir / "model_comparison.csv"
    ranking.to_csv(comparison_file, index=False)
    logger.info(f"Comparison table saved to {comparison_file}")

    metrics_file = metrics_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump({
            'ranking_basis': basis,
            'best_model': best_name,
            'best_params': best_model.params,
            'test_metrics': test_metrics,
            'ranking_consistency': consistency,
            'models': json.loads(ranking.to_json(orient='records')),
            'tuning': [entry['tuning'].to_dict() for entry in results]
        }, f, indent=2, default=str)
    logger.info(f"Metrics saved to {metrics_file}")

    figures = []

    logger.info("Generating model comparison plot...")
    plot_model_comparison(table, save_path=str(figures_dir / "eval_model_comparison.png"))
    figures.append("eval_model_comparison.png")

    for entry in results:
        fig = plot_tuning_results(
            entry['tuning'],
            save_path=str(figures_dir / f"tuning_{entry['name']}.png")
        )
        if fig is not None:
            figures.append(f"tuning_{entry['name']}.png")

    logger.info("Generating Actual vs Predicted plot...")
    plot_actual_vs_predicted(
        test_result['y_true'], test_result['y_pred'],
        title=f"{best_name} on test set",
        save_path=str(figures_dir / "eval_actual_vs_predicted.png")
    )
    figures.append("eval_actual_vs_predicted.png")

    logger.info("Generating residual analysis...")
    plot_residuals(
        test_result['y_true'], test_result['y_pred'],
        title=f"{best_name} on test set",
        save_path=str(figures_dir / "eval_residuals.png")
    )
    figures.append("eval_residuals.png")

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    evaluation = {
        'comparison': table,
        'ranking': ranking,
        'basis': basis,
        'consistency': consistency,
        'best_model': best_model,
        'test': test_result,
        'figures': figures,
        'metrics_file': str(metrics_file),
        'comparison_file': str(comparison_file)
    }

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info(f"  Best model: {best_name}")
    logger.info(f"  Test RMSE: {test_metrics['rmse']:.2f}")
    logger.info(f"  Test R²: {test_metrics['rsq']:.4f}")
    logger.info(f"  Test MAE: {test_metrics['mae']:.2f}")
    logger.info("=" * 60)

    return evaluation


def print_comparison_report(ranking: pd.DataFrame, basis: str, consistency: Dict[str, Any]) -> None:
    """
    Print the ranked comparison table and a short narrative.

    Args:
        ranking: Output of rank_models
        basis: Ranking basis used
        consistency: Output of check_ranking_consistency
    """
    print("\n" + "=" * 78)
    print("MODEL COMPARISON")
    print("=" * 78)
    print(f"{'Rank':<6}{'Model':<20}{'CV RMSE':>12}{'± std':>10}{'Train RMSE':>13}{'Train R²':>11}")
    print("-" * 78)

    for _, row in ranking.iterrows():
        print(f"{row['rank']:<6}{row['model']:<20}{row['cv_rmse']:>12.2f}{row['cv_rmse_std']:>10.2f}"
              f"{row['train_rmse']:>13.2f}{row['train_rsq']:>11.4f}")

    print("-" * 78)
    print(f"\nRanked by {basis}.")
    best = ranking.iloc[0]
    if len(ranking) > 1:
        runner_up = ranking.iloc[1]
        print(f"  • {best['model']} ranks first, {runner_up['model']} second "
              f"({runner_up[basis] - best[basis]:.2f} higher {basis}).")
    else:
        print(f"  • {best['model']} is the only model family.")

    if not consistency['consistent']:
        winners = consistency['winners']
        print(f"  ⚠ The basis matters: cross-validated RMSE picks {winners['cv_rmse']}, "
              f"training RMSE picks {winners['train_rmse']}.")
    print("=" * 78 + "\n")


def print_evaluation_report(evaluation: Dict[str, Any]) -> None:
    """
    Print the held-out test metrics of the selected model.

    Args:
        evaluation: Dictionary from evaluate_models
    """
    metrics = evaluation['test']['metrics']

    print("\n" + "=" * 70)
    print("HELD-OUT TEST EVALUATION")
    print("=" * 70)
    print(f"Selected model: {evaluation['best_model'].name}")
    print(f"Hyperparameters: {evaluation['best_model'].params or 'default settings'}")
    print(f"\n  • RMSE: {metrics['rmse']:.2f}")
    print(f"  • R²:   {metrics['rsq']:.4f}")
    print(f"  • MAE:  {metrics['mae']:.2f}")
    print(f"  • Test rows: {metrics['n_samples']}")

    rsq = metrics['rsq']
    print("\nInterpretation:")
    if rsq > 0.9:
        print("  ✓ Excellent model performance (R² > 0.9)")
    elif rsq > 0.7:
        print("  ✓ Good model performance (R² > 0.7)")
    elif rsq > 0.5:
        print("  ⚠ Moderate model performance (R² > 0.5)")
    else:
        print("  ✗ Poor model performance (R² < 0.5) - consider different approach")

    print("=" * 70 + "\n")
