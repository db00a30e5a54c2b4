# SQLAlchemy models
from .base import Base
from .store import KeyValueRecord

__all__ = [
    "Base",
    "KeyValueRecord",
]
