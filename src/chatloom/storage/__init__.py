from chatloom.storage.base import PersistenceBackend
from chatloom.storage.database import Database
from chatloom.storage.models import SessionInfo
from chatloom.storage.session_store import SessionStore

__all__ = ["Database", "PersistenceBackend", "SessionInfo", "SessionStore"]
