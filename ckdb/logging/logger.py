"""Logger accessor used by every driver module.

Applications that call ``configure_logging`` get JSON output; otherwise the
first ``get_logger`` call falls back to a plain ``basicConfig`` at the level
from settings.
"""

from __future__ import annotations

import logging

from ckdb.config import settings

_configured = False

def get_logger(name: str, auto_configure: bool = True) -> logging.Logger:
    """Get a logger under the ``ckdb`` namespace.

    Args:
        name: Dotted suffix, e.g. ``"command"`` becomes ``ckdb.command``.
        auto_configure: Whether to install minimal logging on first use.
    """
    global _configured

    if auto_configure and not _configured:
        _configure_minimal_logging()
        _configured = True

    full_name = name if name.startswith("ckdb") else f"ckdb.{name}"
    return logging.getLogger(full_name)

def _configure_minimal_logging():
    root = logging.getLogger()
    if root.handlers:
        return
    logging.basicConfig(
        level=getattr(logging, settings.app_log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def mark_configured():
    """Called by configure_logging so get_logger leaves handlers alone."""
    global _configured
    _configured = True
