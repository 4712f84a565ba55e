"""Database utilities for the review pipeline."""

from .models import Base, JobRun, JobStage, JobStatus, Product, ProductReview, RawProviderSnapshot  # noqa: F401
from .session import get_engine, get_sessionmaker, init_db, session_dependency, session_scope  # noqa: F401

__all__ = [
    "Base",
    "JobRun",
    "JobStage",
    "JobStatus",
    "Product",
    "ProductReview",
    "RawProviderSnapshot",
    "get_engine",
    "get_sessionmaker",
    "init_db",
    "session_dependency",
    "session_scope",
]
