"""Celery workers running queued analysis jobs."""
