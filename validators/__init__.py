"""Pack allocation validation module."""

from .allocation_rules import validate_allocation, validate_allocation_simple
from .types import InvalidReason, Rules, ValidationResult

__all__ = [
    "validate_allocation",
    "validate_allocation_simple",
    "Rules",
    "ValidationResult",
    "InvalidReason",
]
