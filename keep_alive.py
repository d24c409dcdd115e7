# keep_alive.py
"""Tiny HTTP endpoint so hosting platforms see the process as alive."""

from __future__ import annotations
from threading import Thread
from typing import Callable, Optional
import logging

from flask import Flask

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.keep_alive")


def create_app(tracking_enabled: Callable[[], bool]) -> Flask:
    app = Flask("kakera_ledger")

    @app.route("/")
    def home():
        mode = "ON" if tracking_enabled() else "OFF"
        return f"Kakera Ledger is Online. Mode: {mode}"

    return app


def keep_alive(tracking_enabled: Callable[[], bool], port: int) -> Optional[Thread]:
    """Serve the endpoint on a daemon thread. Port 0 disables it."""
    if not port:
        logger.info("keep_alive:disabled")
        return None
    app = create_app(tracking_enabled)
    t = Thread(target=app.run, kwargs={"host": "0.0.0.0", "port": port}, daemon=True)
    t.start()
    logger.info(f"keep_alive:listening port={port}")
    return t
