"""Application ports (interfaces) used by the application layer."""

from .notifier_port import NotifierPort, NullNotifier
from .storage_port import FileStoragePort

__all__ = [
    "FileStoragePort",
    "NotifierPort",
    "NullNotifier",
]
