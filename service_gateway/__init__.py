"""Airflow Access gateway service."""
