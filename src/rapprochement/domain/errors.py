"""Shared domain error messages and error types."""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class MalformedRuleError(ValidationError):
    """A stored rule whose condition cannot be evaluated."""


class NotFoundError(DomainError):
    """Requested domain entity does not exist."""


class ConflictError(DomainError):
    """Domain conflict, such as a second link in an occupied slot."""


class ConsistencyError(DomainError):
    """Operation requested on an inconsistent selection."""


class RepositoryError(DomainError):
    """The backing store could not serve a read or a write."""


def line_not_found(line_id: int) -> str:
    """Return message for missing transaction line."""
    return f"Transaction line {line_id} not found"


def statement_not_found(statement: int | str) -> str:
    """Return message for missing statement."""
    return f"Statement {statement} not found"


def rule_not_found(rule_id: int) -> str:
    """Return message for missing rule."""
    return f"Rule {rule_id} not found"


def link_not_found(link_id: int) -> str:
    """Return message for missing link."""
    return f"Link {link_id} not found"


def entity_not_found(family: str, entity_id: int) -> str:
    """Return message for missing candidate entity."""
    return f"{family.replace('_', ' ').capitalize()} {entity_id} not found"


def slot_already_linked(line_id: int, slot: str, link_number: str) -> str:
    """Return message when a transaction slot already holds a link."""
    return (
        f"Transaction line {line_id} already has a {slot.lower()} link ({link_number}). "
        "Unlink it first or request a replacement."
    )


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Translate backing store failures into domain errors.

    Uniqueness violations become ConflictError, anything else the store
    raises becomes RepositoryError.
    """
    try:
        yield
    except IntegrityError as e:
        raise ConflictError(f"Could not {action}: {e.orig}") from e
    except SQLAlchemyError as e:
        raise RepositoryError(f"Could not {action}: {e}") from e
