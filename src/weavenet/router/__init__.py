"""Router container lifecycle and the container event helper."""

from .launcher import RouterLauncher, RouterState, classify, normalize_image
from .watcher import LifecycleWatcher

__all__ = ["LifecycleWatcher", "RouterLauncher", "RouterState", "classify", "normalize_image"]
