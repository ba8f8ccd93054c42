"""Gunicorn config for the approval API (run from the repository root)."""
import multiprocessing
import os

chdir = "backend"
wsgi_app = "receiptvault.main:app"
worker_class = "uvicorn.workers.UvicornWorker"

bind = os.getenv("BIND", "0.0.0.0:8000")
# Bulk decisions fan out to a thread pool per request; keep process count moderate.
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() + 1))
timeout = 60
graceful_timeout = 30
keepalive = 5
max_requests = 2000
max_requests_jitter = 200
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
