"""
Gunicorn configuration for Planner.

Run with ``gunicorn -c deploy/gunicorn.conf.py planner.wsgi:app``.
Everything is driven from environment variables for container deployment.
"""

from __future__ import annotations

import logging
import multiprocessing
import os

# ===== Server Binding =====
bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
backlog = int(os.environ.get("GUNICORN_BACKLOG", "2048"))

# ===== Worker Settings =====
# gthread keeps the in-process webhook executor alive between requests
worker_class = os.environ.get("GUNICORN_WORKER_CLASS", "gthread")
workers = int(os.environ.get("GUNICORN_WORKERS", str(multiprocessing.cpu_count() + 1)))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
max_requests = int(os.environ.get("GUNICORN_MAX_REQUESTS", "5000"))
max_requests_jitter = int(os.environ.get("GUNICORN_MAX_REQUESTS_JITTER", "500"))

# ===== Timeouts =====
# Google expects the webhook acknowledged quickly; long pulls run off-request
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.environ.get("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.environ.get("GUNICORN_KEEPALIVE", "5"))

# ===== Logging =====
accesslog = os.environ.get("GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("GUNICORN_ERRORLOG", "-")
loglevel = os.environ.get("GUNICORN_LOGLEVEL", "info")
capture_output = True
access_log_format = os.environ.get(
    "GUNICORN_ACCESS_LOG_FORMAT",
    '{"timestamp": "%(t)s", "remote": "%(h)s", "request": "%(r)s", '
    '"status": %(s)s, "response_time": %(D)s, "pid": %(p)s}',
)

# ===== Proxy =====
forwarded_allow_ips = os.environ.get("GUNICORN_FORWARDED_ALLOW_IPS", "*")
proc_name = os.environ.get("GUNICORN_PROC_NAME", "planner")
preload_app = False


# ===== Lifecycle Hooks =====
def when_ready(server):
    logging.getLogger(__name__).info(
        f"Gunicorn ready on {bind}: workers={workers}, threads={threads}, worker_class={worker_class}"
    )


def worker_exit(server, worker):
    """Let queued webhook pulls finish before the worker goes away."""
    from planner.domains.calendar.services.webhook_service import shutdown_executor

    shutdown_executor(wait=True)


def worker_abort(worker):
    logging.getLogger(__name__).warning(f"Worker {worker.pid} timed out (>{timeout}s), aborting")
