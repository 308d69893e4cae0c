"""Custom exception hierarchy for the tag context engine."""

from errors.exceptions import (
    AttributeFetchError,
    BudgetPolicyNotFoundError,
    CollaboratorError,
    EntityLookupError,
    TagContextError,
)

__all__ = [
    "AttributeFetchError",
    "BudgetPolicyNotFoundError",
    "CollaboratorError",
    "EntityLookupError",
    "TagContextError",
]
