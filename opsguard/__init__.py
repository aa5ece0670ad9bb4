"""Operational rate limiting and monitoring/alerting engine."""
