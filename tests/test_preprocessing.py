"""
Test Suite for Preprocessing Module
===================================

Tests for the FeatureRecipe class, stratified splitting and k-fold partitions.
"""

import numpy as np
import pandas as pd
import pytest

from bikeshare.preprocessing import (
    FeatureRecipe,
    make_folds,
    make_strata,
    preprocess_pipeline,
    split_train_test,
)


class TestFeatureRecipe:
    """Tests for FeatureRecipe class."""

    def test_init(self, recipe):
        assert recipe.target == 'cnt'
        assert recipe.predictors == [
            'holiday', 'workingday', 'temp', 'atemp', 'hum', 'windspeed', 'season', 'weathersit'
        ]

    def test_fit(self, recipe, daily_df):
        recipe.fit(daily_df)

        assert recipe.levels_ == {'season': [1, 2, 3], 'weathersit': [1, 2, 3]}
        assert recipe.n_features_out_ == 10

    def test_indicator_columns(self, recipe, daily_df):
        out = recipe.fit_transform(daily_df)

        assert list(out.columns) == [
            'holiday', 'workingday', 'temp', 'atemp', 'hum', 'windspeed',
            'season_2', 'season_3', 'weathersit_2', 'weathersit_3'
        ]
        # reference level 1 is all zeros
        first_season = daily_df['season'] == 1
        assert (out.loc[first_season, ['season_2', 'season_3']] == 0).all().all()
        assert out['season_2'].sum() == (daily_df['season'] == 2).sum()

    def test_numeric_unchanged(self, recipe, daily_df):
        out = recipe.fit_transform(daily_df)

        pd.testing.assert_series_equal(out['temp'], daily_df['temp'])
        assert out.index.equals(daily_df.index)

    def test_same_schema_train_and_test(self, recipe, daily_df):
        train, test = split_train_test(daily_df, seed=3)
        recipe.fit(train)

        train_out = recipe.transform(train)
        test_out = recipe.transform(test)

        assert list(train_out.columns) == list(test_out.columns)
        assert list(train_out.columns) == list(recipe.get_feature_names_out())

    def test_unseen_level_raises(self, recipe, daily_df):
        recipe.fit(daily_df[daily_df['weathersit'] != 3])

        with pytest.raises(ValueError, match="Unseen categorical levels.*weathersit"):
            recipe.transform(daily_df)

    def test_transform_before_fit(self, recipe, daily_df):
        with pytest.raises(ValueError, match="must be fitted"):
            recipe.transform(daily_df)

    def test_missing_values_raise(self, recipe, daily_df):
        recipe.fit(daily_df)
        daily_df.loc[5, 'hum'] = np.nan

        with pytest.raises(ValueError, match="Missing values"):
            recipe.transform(daily_df)

    def test_missing_column_raises(self, recipe, daily_df):
        with pytest.raises(ValueError, match="not found"):
            recipe.fit(daily_df.drop(columns=['windspeed']))

    @pytest.mark.parametrize("column", ['casual', 'registered', 'cnt'])
    def test_leaking_predictor_raises(self, daily_df, column):
        recipe = FeatureRecipe(target='cnt', numeric_predictors=['temp', column], categorical_predictors=[])

        with pytest.raises(ValueError, match=f"{column}.*leak the target"):
            recipe.fit(daily_df)

    def test_numeric_only(self, daily_df):
        recipe = FeatureRecipe(target='cnt', numeric_predictors=['temp', 'hum'], categorical_predictors=[])
        out = recipe.fit_transform(daily_df)

        assert list(out.columns) == ['temp', 'hum']

    def test_split_xy(self, recipe, daily_df):
        X, y = recipe.split_xy(daily_df)

        assert list(X.columns) == recipe.predictors
        assert y.name == 'cnt'

    def test_from_config(self):
        recipe = FeatureRecipe.from_config({
            'features': {'target': 'cnt', 'numeric': ['temp'], 'categorical': ['season']}
        })

        assert recipe.numeric_predictors == ['temp']
        assert recipe.categorical_predictors == ['season']


class TestSplitTrainTest:
    """Tests for split_train_test."""

    def test_deterministic(self, daily_df):
        train_a, test_a = split_train_test(daily_df, seed=11)
        train_b, test_b = split_train_test(daily_df, seed=11)

        pd.testing.assert_frame_equal(train_a, train_b)
        pd.testing.assert_frame_equal(test_a, test_b)

    def test_seed_changes_split(self, daily_df):
        train_a, _ = split_train_test(daily_df, seed=1)
        train_b, _ = split_train_test(daily_df, seed=2)

        assert not train_a.index.equals(train_b.index)

    @pytest.mark.parametrize("prop", [0.1, 0.25, 0.5, 0.75, 0.9])
    def test_disjoint_and_complete(self, daily_df, prop):
        train, test = split_train_test(daily_df, prop=prop, seed=5)

        assert set(train.index).isdisjoint(test.index)
        assert set(train.index) | set(test.index) == set(daily_df.index)
        assert len(train) == int(np.floor(prop * len(daily_df)))

    def test_default_fraction(self, daily_df):
        train, test = split_train_test(daily_df)

        assert len(train) == 150
        assert len(test) == 50

    def test_stratification(self, daily_df):
        train, test = split_train_test(daily_df, seed=0)
        quartiles = daily_df['cnt'].quantile([0.25, 0.5, 0.75]).to_numpy()

        train_bins = np.bincount(np.searchsorted(quartiles, train['cnt']), minlength=4) / len(train)
        test_bins = np.bincount(np.searchsorted(quartiles, test['cnt']), minlength=4) / len(test)

        np.testing.assert_allclose(train_bins, 0.25, atol=0.05)
        np.testing.assert_allclose(test_bins, 0.25, atol=0.05)

    @pytest.mark.parametrize("prop", [0.0, 1.0, -0.5, 1.5])
    def test_invalid_fraction(self, daily_df, prop):
        with pytest.raises(ValueError, match="Training fraction"):
            split_train_test(daily_df, prop=prop)

    def test_too_few_rows(self, daily_df):
        with pytest.raises(ValueError, match="empty"):
            split_train_test(daily_df.head(3), prop=0.1)


class TestMakeFolds:
    """Tests for make_folds."""

    @pytest.mark.parametrize("k", [2, 5, 10])
    def test_partition(self, daily_df, k):
        folds = make_folds(daily_df, k=k, seed=3)

        assert len(folds) == k
        validation_sets = [set(val.tolist()) for _, val in folds]
        for i in range(k):
            for j in range(i + 1, k):
                assert validation_sets[i].isdisjoint(validation_sets[j])
        assert set().union(*validation_sets) == set(range(len(daily_df)))

        for train_pos, val_pos in folds:
            assert set(train_pos).isdisjoint(val_pos)
            assert len(train_pos) + len(val_pos) == len(daily_df)

    def test_deterministic(self, daily_df):
        folds_a = make_folds(daily_df, k=5, seed=9)
        folds_b = make_folds(daily_df, k=5, seed=9)

        for (tr_a, va_a), (tr_b, va_b) in zip(folds_a, folds_b):
            np.testing.assert_array_equal(tr_a, tr_b)
            np.testing.assert_array_equal(va_a, va_b)

    def test_small_data_falls_back(self, daily_df):
        folds = make_folds(daily_df.head(6), k=3, seed=0)

        assert len(folds) == 3
        assert sorted(np.concatenate([val for _, val in folds]).tolist()) == list(range(6))

    @pytest.mark.parametrize("k", [0, 1, 500])
    def test_invalid_k(self, daily_df, k):
        with pytest.raises(ValueError):
            make_folds(daily_df, k=k)


class TestMakeStrata:
    """Tests for make_strata."""

    def test_quartiles(self):
        strata = make_strata(pd.Series(np.arange(100)), breaks=4)

        assert np.bincount(strata).tolist() == [25, 25, 25, 25]

    def test_reduces_bins(self):
        # pool=0.3 forbids four bins of 25%
        strata = make_strata(pd.Series(np.arange(100)), breaks=4, pool=0.3)

        assert len(np.unique(strata)) == 3

    def test_constant_target(self):
        assert make_strata(pd.Series(np.ones(50))) is None


def test_preprocess_pipeline(daily_df):
    config = {
        'features': {
            'target': 'cnt',
            'numeric': ['temp', 'hum', 'windspeed'],
            'categorical': ['season', 'weathersit']
        },
        'split': {'train_fraction': 0.8, 'seed': 1},
        'tuning': {'folds': 4}
    }

    result = preprocess_pipeline(daily_df, config)

    assert len(result['train']) == 160
    assert len(result['test']) == 40
    assert len(result['folds']) == 4
    assert result['feature_names'] == [
        'temp', 'hum', 'windspeed', 'season_2', 'season_3', 'weathersit_2', 'weathersit_3'
    ]
