"""Launch the local HTTP API with uvicorn."""

from __future__ import annotations

import logging
import socket
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .bootstrap import create_services
from .models import CatalogVariant
from .paths import get_db_path
from .webapp import create_app

logger = logging.getLogger(__name__)


def run_dashboard(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    variant: str | CatalogVariant = CatalogVariant.METER,
    open_browser: bool = True,
    log_level: str = "info",
) -> None:
    """Serve the account API until interrupted; optionally open its docs page."""
    resolved_path = db_path or get_db_path()
    services = create_services(db_path=resolved_path, variant=variant)
    logger.info(
        "Serving %s account from %s on http://%s:%d",
        services.config.variant.value,
        resolved_path,
        host,
        port,
    )

    if open_browser:
        threading.Thread(
            target=_open_docs_when_ready, args=(host, port), daemon=True
        ).start()

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(create_app(services=services), host=host, port=port, log_level=log_level)


def _open_docs_when_ready(host: str, port: int, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                break
        except OSError:
            time.sleep(0.2)
    url = f"http://{host}:{port}/docs"
    try:
        webbrowser.open(url)
    except Exception:
        logger.exception("Could not open a browser for %s", url)
