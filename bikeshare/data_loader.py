"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and validation of the daily
bike sharing dataset.

Functions:
    - load_config: Load YAML configuration file
    - load_data: Load the daily CSV and check its column schema
    - validate_data: Check data quality constraints (missing values, duplicates)
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
import yaml

logger = logging.getLogger(__name__)

# Column schema of the daily bike sharing dataset
DATE_COLUMN = "dteday"
INDEX_COLUMN = "instant"
TARGET_COLUMN = "cnt"

EXPECTED_COLUMNS = [
    "instant", "dteday", "season", "yr", "mnth", "holiday", "weekday",
    "workingday", "weathersit", "temp", "atemp", "hum", "windspeed",
    "casual", "registered", "cnt",
]

# Sub-counts of the target, never used as predictors
LEAKAGE_COLUMNS = ["casual", "registered"]


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_data(
    file_path: str,
    required_columns: Optional[List[str]] = None,
    parse_dates: bool = True
) -> pd.DataFrame:
    """
    Load the daily rentals CSV and check that the expected columns are present.

    Args:
        file_path: Path to the CSV file
        required_columns: Columns that must be present (default: full daily schema)
        parse_dates: Whether to parse the date column into datetimes

    Returns:
        DataFrame containing the loaded data, ordered by date

    Raises:
        FileNotFoundError: If data file doesn't exist
        ValueError: If the file is empty, unparsable or misses schema columns
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Data file not found: {file_path}")

    try:
        df = pd.read_csv(file_path)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ValueError(f"Malformed CSV file {file_path}: {e}") from e

    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    if df.empty:
        raise ValueError(f"Data file {file_path} contains no rows")

    if required_columns is None:
        required_columns = EXPECTED_COLUMNS

    missing = [col for col in required_columns if col not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required columns: {missing}. "
            f"Columns found: {list(df.columns)}"
        )

    if parse_dates and DATE_COLUMN in df.columns:
        try:
            df[DATE_COLUMN] = pd.to_datetime(df[DATE_COLUMN])
        except (ValueError, TypeError) as e:
            raise ValueError(f"Column '{DATE_COLUMN}' could not be parsed as dates: {e}") from e
        df = df.sort_values(DATE_COLUMN, kind="mergesort").reset_index(drop=True)

    return df


def validate_data(
    df: pd.DataFrame,
    required_columns: Optional[List[str]] = None,
    strict: bool = True
) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints before splitting and fitting.

    Checks:
        - No missing values in the required columns
        - Numeric dtype for every required column except the date
        - No duplicated day index

    Missing values and non-numeric columns are issues; duplicates are only
    reported as warnings.

    Args:
        df: DataFrame to validate
        required_columns: Columns that must be complete (default: full daily schema)
        strict: If True, raise errors on validation failure

    Returns:
        Tuple of (is_valid, validation_report)
    """
    if required_columns is None:
        required_columns = [col for col in EXPECTED_COLUMNS if col in df.columns]

    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": [],
        "warnings": []
    }

    # Check 1: Missing values
    missing_counts = df[required_columns].isnull().sum()
    total_missing = int(missing_counts.sum())
    if total_missing > 0:
        issue = f"Missing values: {total_missing} in columns {missing_counts[missing_counts > 0].index.tolist()}"
        report["issues"].append(issue)
        report["missing_by_column"] = {k: int(v) for k, v in missing_counts[missing_counts > 0].items()}
        logger.warning(issue)

    # Check 2: Numeric predictors and target
    numeric_expected = [col for col in required_columns if col != DATE_COLUMN]
    non_numeric = [
        col for col in numeric_expected
        if not pd.api.types.is_numeric_dtype(df[col])
    ]
    if non_numeric:
        issue = f"Non-numeric columns found: {non_numeric}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 3: Duplicated days
    if INDEX_COLUMN in df.columns:
        duplicates = int(df[INDEX_COLUMN].duplicated().sum())
    else:
        duplicates = int(df.duplicated().sum())
    if duplicates > 0:
        warning = f"Duplicate rows found: {duplicates}"
        report["warnings"].append(warning)
        logger.warning(warning)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and not is_valid:
        raise ValueError(f"Data validation failed: {report['issues']}")

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "statistics": {}
    }

    if DATE_COLUMN in df.columns and pd.api.types.is_datetime64_any_dtype(df[DATE_COLUMN]):
        summary["date_range"] = (
            df[DATE_COLUMN].min().strftime("%Y-%m-%d"),
            df[DATE_COLUMN].max().strftime("%Y-%m-%d")
        )

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max()),
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    summary = get_data_summary(df)

    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    if "date_range" in summary:
        print(f"Date range: {summary['date_range'][0]} to {summary['date_range'][1]}")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.select_dtypes(include=[np.number]).describe().round(4).to_string())
    print("=" * 60 + "\n")
