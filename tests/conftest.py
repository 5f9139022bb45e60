"""Shared fixtures: synthetic daily rental data in the day.csv schema."""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from bikeshare.preprocessing import FeatureRecipe


def make_daily_frame(n_days: int = 200, seed: int = 0) -> pd.DataFrame:
    """Build a daily rentals frame with the day.csv columns and a learnable target."""
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2011-01-01", periods=n_days, freq="D")
    i = np.arange(n_days)

    season = (dates.month % 12) // 3 + 1
    weekday = (dates.dayofweek + 1) % 7
    holiday = (i % 25 == 5).astype(int)
    workingday = ((weekday > 0) & (weekday < 6) & (holiday == 0)).astype(int)
    weathersit = np.where(i % 10 == 0, 3, np.where(i % 3 == 0, 2, 1))

    temp = rng.uniform(0.1, 0.9, n_days)
    atemp = np.clip(temp * 0.9 + rng.normal(0, 0.02, n_days), 0, 1)
    hum = rng.uniform(0.3, 0.95, n_days)
    windspeed = rng.uniform(0.05, 0.45, n_days)

    cnt = (
        1500 + 5000 * temp - 1500 * hum - 800 * windspeed
        + 300 * workingday - 900 * (weathersit == 3)
        + rng.normal(0, 150, n_days)
    ).round().astype(int)
    casual = (cnt * 0.2).astype(int)

    return pd.DataFrame({
        "instant": i + 1,
        "dteday": dates,
        "season": season.astype(int),
        "yr": (dates.year - 2011).astype(int),
        "mnth": dates.month.astype(int),
        "holiday": holiday,
        "weekday": weekday.astype(int),
        "workingday": workingday,
        "weathersit": weathersit,
        "temp": temp,
        "atemp": atemp,
        "hum": hum,
        "windspeed": windspeed,
        "casual": casual,
        "registered": cnt - casual,
        "cnt": cnt,
    })


@pytest.fixture
def daily_df():
    return make_daily_frame()


@pytest.fixture
def recipe():
    return FeatureRecipe(
        target="cnt",
        numeric_predictors=["holiday", "workingday", "temp", "atemp", "hum", "windspeed"],
        categorical_predictors=["season", "weathersit"],
    )


@pytest.fixture
def daily_csv(tmp_path, daily_df):
    path = tmp_path / "day.csv"
    out = daily_df.copy()
    out["dteday"] = out["dteday"].dt.strftime("%Y-%m-%d")
    out.to_csv(path, index=False)
    return path
