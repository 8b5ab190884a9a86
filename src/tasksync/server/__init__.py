"""Remote batch sync server."""

from .applier import BatchApplier
from .app import create_app, run_server

__all__ = [
    "BatchApplier",
    "create_app",
    "run_server"
]
