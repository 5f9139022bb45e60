"""
Exploratory Data Analysis (EDA) Module
======================================

Descriptive figures of daily bike rentals and their drivers.

Functions:
    - plot_rentals_over_time: Daily counts with a rolling mean
    - plot_rentals_by_category: Box plots per season, weather and weekday
    - plot_weather_relationships: Rentals against temperature, humidity and wind
    - plot_correlation_matrix: Correlation heatmap
    - plot_target_distribution: Histogram of the target with a normality test
    - generate_eda_report: Full EDA report with all visualizations
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats

from .data_loader import DATE_COLUMN, TARGET_COLUMN

logger = logging.getLogger(__name__)

# Set style for all plots
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

SEASON_LABELS = {1: 'winter', 2: 'spring', 3: 'summer', 4: 'fall'}
WEATHER_LABELS = {1: 'clear', 2: 'mist', 3: 'light rain/snow', 4: 'heavy rain/snow'}
WEEKDAY_LABELS = {0: 'Sun', 1: 'Mon', 2: 'Tue', 3: 'Wed', 4: 'Thu', 5: 'Fri', 6: 'Sat'}


def plot_rentals_over_time(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    window: int = 30,
    figsize: Tuple[int, int] = (14, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot daily rentals over time with a rolling mean.

    Args:
        df: Daily dataset
        target: Count column to plot
        window: Rolling window in days
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Matplotlib Figure object
    """
    x = df[DATE_COLUMN] if DATE_COLUMN in df.columns else df.index

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(x, df[target], linewidth=0.8, alpha=0.6, label='Daily')
    ax.plot(x, df[target].rolling(window=window, min_periods=1).mean(),
            color='red', linewidth=2, label=f'Rolling mean ({window} days)')

    if {'casual', 'registered'} <= set(df.columns):
        ax.plot(x, df['registered'], linewidth=0.6, alpha=0.5, label='Registered')
        ax.plot(x, df['casual'], linewidth=0.6, alpha=0.5, label='Casual')

    ax.set_xlabel('Date')
    ax.set_ylabel('Rentals')
    ax.set_title('Daily Bike Rentals', fontsize=14, fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Rentals over time plot saved to {save_path}")

    return fig


def plot_rentals_by_category(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    figsize: Tuple[int, int] = (16, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Box plots of rentals per season, weather situation and weekday.

    Args:
        df: Daily dataset
        target: Count column
        figsize: Figure size
        save_path: Path to save the figure

    Returns:
        Matplotlib Figure object
    """
    panels = [
        ('season', SEASON_LABELS),
        ('weathersit', WEATHER_LABELS),
        ('weekday', WEEKDAY_LABELS),
    ]
    panels = [(col, labels) for col, labels in panels if col in df.columns]

    fig, axes = plt.subplots(1, max(len(panels), 1), figsize=figsize, squeeze=False)

    for idx, (col, labels) in enumerate(panels):
        ax = axes[0][idx]
        order = sorted(df[col].unique())
        sns.boxplot(data=df, x=col, y=target, order=order, ax=ax)
        ax.set_xticks(range(len(order)))
        ax.set_xticklabels([labels.get(level, str(level)) for level in order], rotation=20)
        ax.set_xlabel(col)
        ax.set_ylabel('Rentals')
        ax.set_title(f'Rentals by {col}', fontsize=10, fontweight='bold')

    plt.suptitle('Rentals by Category', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Category box plots saved to {save_path}")

    return fig


def plot_weather_relationships(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    columns: Optional[List[str]] = None,
    figsize: Tuple[int, int] = (16, 4),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Scatter rentals against the normalised weather measurements.

    Points are coloured by year; a linear trend is drawn per panel.
    """
    if columns is None:
        columns = [col for col in ['temp', 'atemp', 'hum', 'windspeed'] if col in df.columns]

    fig, axes = plt.subplots(1, max(len(columns), 1), figsize=figsize, squeeze=False)
    hue = 'yr' if 'yr' in df.columns else None

    for idx, col in enumerate(columns):
        ax = axes[0][idx]
        sns.scatterplot(data=df, x=col, y=target, hue=hue, ax=ax, s=15, alpha=0.6)

        z = np.polyfit(df[col].values, df[target].values, 1)
        xs = np.linspace(df[col].min(), df[col].max(), 50)
        ax.plot(xs, np.poly1d(z)(xs), 'r--', alpha=0.7, label=f'slope: {z[0]:.0f}')

        r, _ = stats.pearsonr(df[col], df[target])
        ax.set_title(f'{col} (r={r:.2f})', fontsize=10, fontweight='bold')
        ax.legend(fontsize=7)

    plt.suptitle('Rentals vs Weather', fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Weather relationship plots saved to {save_path}")

    return fig


def plot_correlation_matrix(
    df: pd.DataFrame,
    method: str = 'pearson',
    figsize: Tuple[int, int] = (12, 10),
    save_path: Optional[str] = None
) -> Tuple[plt.Figure, pd.DataFrame]:
    """
    Create a correlation heatmap for all numerical columns.

    Args:
        df: DataFrame with numerical data
        method: Correlation method ('pearson', 'spearman', 'kendall')
        figsize: Figure size (width, height)
        save_path: Path to save the figure (optional)

    Returns:
        Tuple of (Figure, correlation matrix DataFrame)
    """
    numeric = df.select_dtypes(include=[np.number]).drop(columns=['instant'], errors='ignore')
    corr_matrix = numeric.corr(method=method)

    fig, ax = plt.subplots(figsize=figsize)

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)
    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt='.2f',
        cmap='RdYlBu_r',
        center=0,
        square=True,
        linewidths=0.5,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
        ax=ax,
        vmin=-1,
        vmax=1
    )

    ax.set_title(f'Correlation Matrix ({method.capitalize()})',
                 fontsize=14, fontweight='bold')
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Correlation matrix saved to {save_path}")

    return fig, corr_matrix


def plot_target_distribution(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    figsize: Tuple[int, int] = (8, 5),
    save_path: Optional[str] = None
) -> plt.Figure:
    """
    Histogram + KDE of the target with mean, median and a normality test.
    """
    fig, ax = plt.subplots(figsize=figsize)

    sns.histplot(df[target], kde=True, ax=ax, bins=40, alpha=0.7)

    mean_val = df[target].mean()
    median_val = df[target].median()
    ax.axvline(mean_val, color='red', linestyle='--', label=f'Mean: {mean_val:.0f}')
    ax.axvline(median_val, color='green', linestyle='--', label=f'Median: {median_val:.0f}')

    # normaltest needs at least 8 observations
    if df[target].count() >= 8:
        _, p_value = stats.normaltest(df[target].dropna())
        normality = "Normal" if p_value > 0.05 else "Non-Normal"
        ax.set_title(f'{target} ({normality}, p={p_value:.3f})', fontsize=12, fontweight='bold')
    else:
        ax.set_title(target, fontsize=12, fontweight='bold')
    ax.legend(fontsize=8)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info(f"Target distribution saved to {save_path}")

    return fig


def generate_eda_report(
    df: pd.DataFrame,
    target: str = TARGET_COLUMN,
    output_dir: str = "reports/figures/",
    show_plots: bool = False
) -> Dict[str, Any]:
    """
    Generate a complete EDA report with all visualizations.

    Args:
        df: DataFrame to analyze
        target: Count column
        output_dir: Directory to save figures
        show_plots: Whether to display plots interactively

    Returns:
        Dictionary containing EDA results and file paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        "data_shape": df.shape,
        "columns": list(df.columns),
        "figures": [],
        "correlation_matrix": None,
        "statistics": {}
    }

    logger.info("=" * 60)
    logger.info("STARTING EXPLORATORY DATA ANALYSIS")
    logger.info("=" * 60)

    logger.info("Plotting rentals over time...")
    plot_rentals_over_time(df, target, save_path=str(output_dir / "01_rentals_over_time.png"))
    report["figures"].append("01_rentals_over_time.png")

    logger.info("Plotting rentals by category...")
    plot_rentals_by_category(df, target, save_path=str(output_dir / "02_rentals_by_category.png"))
    report["figures"].append("02_rentals_by_category.png")

    logger.info("Plotting weather relationships...")
    plot_weather_relationships(df, target, save_path=str(output_dir / "03_weather_relationships.png"))
    report["figures"].append("03_weather_relationships.png")

    logger.info("Computing correlation matrix...")
    _, corr_matrix = plot_correlation_matrix(
        df,
        save_path=str(output_dir / "04_correlation_matrix.png")
    )
    report["figures"].append("04_correlation_matrix.png")
    report["correlation_matrix"] = corr_matrix.to_dict()

    logger.info("Plotting target distribution...")
    plot_target_distribution(df, target, save_path=str(output_dir / "05_target_distribution.png"))
    report["figures"].append("05_target_distribution.png")

    for col in df.select_dtypes(include=[np.number]).columns:
        report["statistics"][col] = {
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "max": float(df[col].max()),
            "skew": float(df[col].skew())
        }

    if show_plots:
        plt.show()
    else:
        plt.close('all')

    logger.info("=" * 60)
    logger.info("EDA COMPLETE - All figures saved to: %s", output_dir)
    logger.info("=" * 60)

    return report


def print_correlation_insights(
    corr_matrix: pd.DataFrame,
    target: str = TARGET_COLUMN,
    threshold: float = 0.5
) -> None:
    """
    Print the predictors most strongly correlated with the target.

    Args:
        corr_matrix: Correlation matrix DataFrame
        target: Count column
        threshold: Correlation threshold for "strong" correlation
    """
    print("\n" + "=" * 50)
    print("CORRELATION INSIGHTS")
    print("=" * 50)

    if target not in corr_matrix.columns:
        print(f"Target '{target}' not in correlation matrix")
        print("=" * 50 + "\n")
        return

    # casual/registered sum to the target and are left out
    related = corr_matrix[target].drop(labels=[target, 'casual', 'registered'], errors='ignore')
    strong = related[related.abs() >= threshold].sort_values(key=np.abs, ascending=False)

    if len(strong) > 0:
        print(f"\nStrong correlations with {target} (|r| >= {threshold}):")
        for col, value in strong.items():
            direction = "positive" if value > 0 else "negative"
            print(f"  • {col}: {value:.3f} ({direction})")
    else:
        print(f"\nNo strong correlations with {target} found (|r| >= {threshold})")

    # temp and atemp are near duplicates in this dataset
    if {'temp', 'atemp'} <= set(corr_matrix.columns):
        print(f"\n  temp ↔ atemp: {corr_matrix.loc['temp', 'atemp']:.3f}")

    print("=" * 50 + "\n")
