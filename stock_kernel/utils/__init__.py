"""Utility functions for the stock kernel."""
