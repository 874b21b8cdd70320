from app.services.store.base import RecordStore, StoreError
from app.services.store.memory import InMemoryStore
from app.services.store.sql import SqlAlchemyStore

__all__ = ["RecordStore", "StoreError", "InMemoryStore", "SqlAlchemyStore"]
