"""
Webhook TUI - Receive, persist and browse webhooks behind a timed public tunnel
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .store import RecordStore, StorageError
from .tunnel import TunnelSessionManager

__all__ = ["RecordStore", "StorageError", "TunnelSessionManager", "__version__"]
