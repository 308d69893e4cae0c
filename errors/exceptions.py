"""Domain-specific exceptions for the tag context engine.

Unresolved and ambiguous markers, truncated marker lists and budget drops
are expected outcomes and are returned as data.  The exceptions below cover
the two genuine failure modes: a collaborator call that failed, and a
deployment with no budget policy for a request purpose.
"""

from __future__ import annotations


class TagContextError(Exception):
    """Base class for tag context engine errors."""


class BudgetPolicyNotFoundError(TagContextError):
    """No budget policy is registered for a request purpose.

    Treated as a configuration bug: the whole request fails rather than
    falling back to a default policy.
    """

    def __init__(self, purpose: str, known: list[str] | None = None) -> None:
        self.purpose = purpose
        self.known = sorted(known or [])
        hint = f" (known: {', '.join(self.known)})" if self.known else ""
        super().__init__(f"No budget policy registered for purpose '{purpose}'{hint}")


class CollaboratorError(TagContextError):
    """An injected lookup, permission or attribute-fetch call failed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"Collaborator call '{operation}' failed: {message}")


class EntityLookupError(CollaboratorError):
    """A tier query failed while resolving one marker key."""

    def __init__(self, key: str, category: str, message: str) -> None:
        self.key = key
        self.category = category
        super().__init__(
            operation=f"find_by_normalized_name[{category}]",
            message=f"key '{key}': {message}",
        )


class AttributeFetchError(CollaboratorError):
    """Attribute fetch failed for one resolved entity."""

    def __init__(self, entity_id: str, category: str, message: str) -> None:
        self.entity_id = entity_id
        self.category = category
        super().__init__(
            operation=f"fetch_attributes[{category}]",
            message=f"entity '{entity_id}': {message}",
        )
