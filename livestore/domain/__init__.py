"""
Domain package for livestore.

Exports the record base class, relationship declarations and the concrete
record kinds. Keep this package focused on data definitions and validation.
"""

from livestore.domain.models import (
    DEFAULT_MODELS,
    DeleteRule,
    Job,
    Record,
    Relationship,
    User,
)

__all__ = [
    "DEFAULT_MODELS",
    "DeleteRule",
    "Job",
    "Record",
    "Relationship",
    "User",
]
