"""Metrics, zonal statistics, reporting and exports."""
