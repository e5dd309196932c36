"""Shared pytest configuration."""

import matplotlib

# Figures are only written to disk during tests
matplotlib.use("Agg")
