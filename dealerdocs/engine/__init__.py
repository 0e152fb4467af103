"""DealerDocs Engine — configuration, errors, logging, HTTP client, notifier, timers."""

from dealerdocs.engine.config import DealerDocsConfig, get_config, load_config  # noqa: F401
from dealerdocs.engine.http import Blob, FileServiceClient  # noqa: F401
from dealerdocs.engine.notifier import LoggingNotifier, Notifier  # noqa: F401
from dealerdocs.engine.timers import DeferredActions  # noqa: F401

__all__ = [
    "DealerDocsConfig",
    "get_config",
    "load_config",
    "Blob",
    "FileServiceClient",
    "LoggingNotifier",
    "Notifier",
    "DeferredActions",
]
