"""
CompSet Manager

Named, curated, reusable collections of comparable ids with
optimistic-concurrency writes.
"""

from .schema import AuditAction, AuditEvent, CompSet, generate_compset_id
from .repository import CompSetRepository, get_compset_repository, reset_compset_repository

__all__ = [
    "AuditAction",
    "AuditEvent",
    "CompSet",
    "CompSetRepository",
    "generate_compset_id",
    "get_compset_repository",
    "reset_compset_repository",
]
