"""Forum domain exports."""

from .repo import ForumRepository
from .service import ForumService

__all__ = ["ForumRepository", "ForumService"]
