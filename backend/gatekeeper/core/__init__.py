"""Core infrastructure: settings, database, redis, celery."""
