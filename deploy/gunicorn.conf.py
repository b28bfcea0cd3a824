"""
Gunicorn configuration for the Aptivo API.

    gunicorn -c deploy/gunicorn.conf.py aptivo.main:app
"""
import logging
import multiprocessing
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Logging
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "aptivo"

# Server mechanics
daemon = False
pidfile = "/tmp/aptivo-gunicorn.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

logger = logging.getLogger("gunicorn.error")


def when_ready(server):
    """Called just after the server is started."""
    if not os.environ.get("SERVICE_ROLE_KEY"):
        logger.warning("SERVICE_ROLE_KEY is not set; privileged handlers only accept admin tokens")
    logger.info(f"Aptivo API ready with {workers} workers")


def on_exit(server):
    logger.info("Aptivo API stopped")
