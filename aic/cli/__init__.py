"""CLI module for aic."""
