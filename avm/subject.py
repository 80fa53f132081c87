"""
Subject Property Lookup

Resolves a property id to the SubjectRef the valuation pipeline needs.
The property catalogue itself lives outside this package; the in-memory
directory here is what the service uses when no catalogue is wired in.
"""

import dataclasses
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .comp_engine import SubjectNotFound, SubjectRef


logger = logging.getLogger(__name__)


class SubjectLookup(ABC):
    """Read-only access to subject properties by id."""

    @abstractmethod
    def resolve_subject(self, property_id: str) -> SubjectRef:
        """
        Resolve a property id.

        Raises:
            SubjectNotFound: if the id is unknown
        """
        ...


class InMemorySubjectDirectory(SubjectLookup):
    """
    Subject lookup backed by a dict.

    Registered subjects are stored with their property_id set so results
    can be traced back to the catalogue entry.
    """

    def __init__(self):
        self._subjects: dict[str, SubjectRef] = {}
        self._lock = threading.Lock()

    def register(self, property_id: str, subject: SubjectRef) -> SubjectRef:
        """Add or replace a subject under the given id."""
        if subject.property_id != property_id:
            subject = dataclasses.replace(subject, property_id=property_id)
        with self._lock:
            self._subjects[property_id] = subject
        logger.debug("Registered subject %s", property_id)
        return subject

    def resolve_subject(self, property_id: str) -> SubjectRef:
        with self._lock:
            subject = self._subjects.get(property_id)
        if subject is None:
            raise SubjectNotFound(property_id)
        return subject


# =============================================================================
# Singleton Instance
# =============================================================================

_subject_lookup: Optional[InMemorySubjectDirectory] = None


def get_subject_lookup() -> InMemorySubjectDirectory:
    """Get the subject lookup singleton."""
    global _subject_lookup
    if _subject_lookup is None:
        _subject_lookup = InMemorySubjectDirectory()
    return _subject_lookup


def reset_subject_lookup() -> None:
    """Drop the singleton so the next get_subject_lookup() starts fresh."""
    global _subject_lookup
    _subject_lookup = None
