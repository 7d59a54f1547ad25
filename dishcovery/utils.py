"""Shared utilities for Dishcovery."""

import base64
import hashlib
import logging
from pathlib import Path
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

# Rich console for pretty output
console = Console()

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("trimesh", "PIL", "aiohttp.access")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Set up logging with Rich handler."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("dishcovery")


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module."""
    return logging.getLogger(f"dishcovery.{name}")


def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists and return the Path."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def file_hash(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """Hex digest of a file's contents."""
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def safe_filename(name: str, max_length: int = 64) -> str:
    """Turn an item id or title into a safe file/folder name."""
    safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in name)
    while "__" in safe:
        safe = safe.replace("__", "_")
    safe = safe[:max_length].strip("_.")
    return safe or "item"


def encode_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(url: str) -> bytes:
    """Payload of a base64 ``data:`` URL."""
    header, _, payload = url.partition(",")
    if not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URL")
    return base64.b64decode(payload)
