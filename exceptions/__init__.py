"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    InputError,
    NotFoundError,
    ValidationError,
    ExternalServiceError,
    DatabaseError,

    # Storage
    StorageError,

    # Bulk import
    ImportNotFoundError,
    DraftNotFoundError,
    DraftImageNotFoundError,
    InvalidReferenceError,
    InvalidStatusTransitionError,
)

__all__ = [
    # Base
    "AppError",
    "InputError",
    "NotFoundError",
    "ValidationError",
    "ExternalServiceError",
    "DatabaseError",

    # Storage
    "StorageError",

    # Bulk import
    "ImportNotFoundError",
    "DraftNotFoundError",
    "DraftImageNotFoundError",
    "InvalidReferenceError",
    "InvalidStatusTransitionError",
]
