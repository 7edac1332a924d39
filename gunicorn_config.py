"""Gunicorn configuration for the allocation controller.

Staged allocations and node locks live in process memory, so everything must
run in a single worker process. Concurrency comes from threads.
"""
import os
import sys

bind = f"{os.environ.get('GPUDRA_HOST', '0.0.0.0')}:{os.environ.get('GPUDRA_PORT', '8080')}"
workers = 1
threads = int(os.environ.get("GPUDRA_THREADS", "8"))
worker_class = "gthread"
timeout = 120
preload_app = False
wsgi_app = "app:build_app()"


def post_worker_init(worker):
    """Called just after a worker has initialized the application."""
    app = getattr(worker, "wsgi", None)
    cfg = app.config.get('gpudra_config') if app is not None and hasattr(app, 'config') else None
    if cfg is not None:
        print(f"[Worker {worker.pid}] serving namespace {cfg.namespace} with {threads} threads",
              file=sys.stderr, flush=True)
    else:
        print(f"[Worker {worker.pid}] WARNING: App or config not found", file=sys.stderr, flush=True)
