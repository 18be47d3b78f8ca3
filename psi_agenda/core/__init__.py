"""Persistence boundary: workspace settings storage and background writes."""
