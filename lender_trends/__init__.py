"""
Lender Trends Analysis
======================

Cleaning, feature derivation and model fitting for a crowdfunding loans
dataset, used to test whether lender counts change over time.

Modules:
    - data_loader: CSV ingestion, schema typing and configuration
    - cleaning: Column pruning, gender counts and id ordering
    - features: Day-offset feature table for one country
    - model: Linear regression, regression tree and random forest fits
    - evaluation: Fit diagnostics and residual analysis
    - eda: Exploratory plots and summary tables
"""

__version__ = "1.0.0"
__author__ = "Predictive Analytics Team"
