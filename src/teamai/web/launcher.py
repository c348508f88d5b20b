"""Dashboard launcher utilities.

Checks the port, optionally opens a browser, and runs the FastAPI app
under uvicorn until interrupted.
"""

from __future__ import annotations

import socket
import threading
import time
import webbrowser
from pathlib import Path
from typing import Union

import uvicorn

from ..logging_config import get_logger
from .server import create_app

__all__ = [
    "check_port_available",
    "start_dashboard_server",
]

logger = get_logger(__name__)


def check_port_available(port: int, host: str = "localhost") -> bool:
    """Check if a port is available for binding."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((host, port))
        return True
    except OSError:
        return False


def start_dashboard_server(
    root: Union[Path, str],
    port: int = 8080,
    host: str = "localhost",
    auto_open: bool = False,
    heartbeat_timeout: float = 600.0,
) -> None:
    """Serve the dashboard for ``root`` (blocking).

    Raises:
        RuntimeError: If the port is already in use
    """
    if not check_port_available(port, host):
        raise RuntimeError(
            f"Port {port} is already in use. "
            f"Try a different port with --port or stop the other service."
        )

    url = f"http://{host}:{port}"
    print(f"Starting Team AI Dashboard for {root}")
    print(f"Dashboard URL: {url}")
    print("Press Ctrl+C to stop")

    if auto_open:
        def open_browser() -> None:
            time.sleep(1.5)
            try:
                webbrowser.open(url)
            except webbrowser.Error as e:
                logger.warning(f"Could not open browser automatically: {e}")

        threading.Thread(target=open_browser, daemon=True).start()

    app = create_app(root, heartbeat_timeout=heartbeat_timeout)
    uvicorn.run(app, host=host, port=port, log_level="warning")
