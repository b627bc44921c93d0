"""Service layer package with shared configuration exports."""

from config import settings as settings

__all__ = ["settings"]
