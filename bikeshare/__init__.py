"""
Bike Rental Model Comparison
============================

Exploratory analysis and regression model comparison for daily bike rental counts.

Modules:
    - data_loader: Configuration, CSV ingestion and validation
    - eda: Exploratory Data Analysis figures
    - preprocessing: Feature recipe, stratified splitting and cross-validation folds
    - model: Regression trainers (linear, k-NN, random forest, boosted trees)
    - tuning: Hyperparameter grids, cross-validated grid search and result cache
    - evaluation: Metrics, model ranking and held-out test report
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
