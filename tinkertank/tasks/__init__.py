"""Celery application and periodic remediation tasks."""
