"""Gunicorn configuration for production deployment.

Reads the same environment variables as core/config.py.

Each worker runs its own cleanup scheduler against the shared store; sweeps
are idempotent bulk deletes, so overlapping ticks only repeat work.

Usage:
    gunicorn main:app -c gunicorn.conf.py
"""
import os
import multiprocessing

host = os.getenv("HOST", "0.0.0.0")
port = os.getenv("PORT", "3002")
workers_env = os.getenv("WORKERS", "0")  # 0 = auto-calculate
log_level = os.getenv("LOG_LEVEL", "INFO").lower()
debug = os.getenv("DEBUG", "false").lower() == "true"

bind = f"{host}:{port}"

# WORKERS=0 means auto (cpu + 1); the app is I/O bound on the agent
workers_count = int(workers_env)
workers = workers_count if workers_count > 0 else (multiprocessing.cpu_count() + 1)
worker_class = "uvicorn.workers.UvicornWorker"

# Agent calls can take a while; keep the worker timeout above AGENT_TIMEOUT
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "10000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "1000"))

accesslog = "-" if not debug else None
errorlog = "-"
loglevel = log_level

proc_name = "weekend-dashboard-backend"

# The lifespan hook owns the engine and scheduler, so never preload
preload_app = False
