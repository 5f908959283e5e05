"""
StudyBuddy Matching — Domain exceptions.

Services raise these; the FastAPI layer maps them to HTTP responses in
``app.main``.  "Nothing to recommend" situations are not errors and never
raise.
"""

from __future__ import annotations


class StudyBuddyError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(StudyBuddyError):
    """Malformed or empty input (e.g. an empty answer map)."""

    status_code = 422


class NotFoundError(StudyBuddyError):
    """Unknown user, group, question or option reference."""

    status_code = 404

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id
