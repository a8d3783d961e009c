from .connection import HostConnection, select_best_page
from .playwright_target import PlaywrightTarget

__all__ = [
    "HostConnection",
    "PlaywrightTarget",
    "select_best_page",
]
