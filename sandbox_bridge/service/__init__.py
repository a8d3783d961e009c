from .app import create_app
from .runner import run_bridge

__all__ = [
    "create_app",
    "run_bridge",
]
