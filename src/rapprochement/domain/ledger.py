"""Link ledger: the single source of truth for reconciliation links."""

import logging
from typing import Optional, Union

from rapprochement.database.base import Database
from rapprochement.domain.entities import (
    Family,
    Link,
    LinkEvent,
    LinkEventKind,
    LinkMethod,
    TransactionLine,
)
from rapprochement.domain.errors import (
    ConflictError,
    NotFoundError,
    link_not_found,
    slot_already_linked,
    store_errors,
)
from rapprochement.domain.status_callbacks import StatusCallback, default_callbacks

logger = logging.getLogger(__name__)


class LinkLedger:
    """Creates and removes links, with their side effects and audit trail.

    A link row, the status change on the linked record and the audit event
    are written in one unit of work. A transaction line holds at most one
    link per slot (invoice, partner).
    """

    def __init__(
        self,
        db: Database,
        callbacks: Optional[dict[Family, StatusCallback]] = None,
        actor: str = "system",
    ):
        """Initialize link ledger.

        Args:
            db: Database instance
            callbacks: Status callbacks per family (defaults to the built-in ones)
            actor: Name recorded on links and audit events
        """
        self.db = db
        self.callbacks = callbacks if callbacks is not None else default_callbacks(db)
        self.actor = actor

    def create_link(
        self,
        line: TransactionLine,
        family: Union[Family, str],
        entity_id: int,
        method: Union[LinkMethod, str],
        score: Optional[int] = None,
        replace: bool = False,
        notes: Optional[str] = None,
    ) -> Link:
        """Link a transaction line to a record.

        Linking a line again to the record it is already linked to returns the
        existing link unchanged.

        Args:
            line: Transaction line
            family: Family of the record
            entity_id: Record ID
            method: AUTO or MANUAL
            score: Matching score (None for manual links)
            replace: Remove whatever link occupies the slot first
            notes: Free text kept on the CREATED audit event

        Returns:
            The created (or already existing) link

        Raises:
            ConflictError: If the slot holds another link and replace is False,
                or the invoice is already reconciled elsewhere
            NotFoundError: If the record does not exist
            ValidationError: If the record cannot be reconciled in its status
            RepositoryError: If the backing store fails; nothing is written
        """
        family = Family(family)
        method = LinkMethod(method)
        with store_errors(f"link line {line.id}"):
            with self.db.unit_of_work():
                existing = self.db.get_link_for_slot(line.id, family.slot)
                if existing is not None:
                    if existing.family is family and existing.entity_id == entity_id:
                        return existing
                    if not replace:
                        raise ConflictError(
                            slot_already_linked(line.id, family.slot.value, existing.link_number)
                        )
                    self._remove(existing, details=f"replaced by {family.value} {entity_id}")

                callback = self.callbacks[family]
                previous_status = callback.snapshot(entity_id)
                link = self.db.create_link(
                    transaction_line_id=line.id,
                    statement_id=line.statement_id,
                    family=family,
                    entity_id=entity_id,
                    method=method,
                    score=score,
                    previous_status=previous_status,
                    created_by=self.actor,
                )
                callback.on_link(link, line)
                self.db.record_link_event(
                    kind=LinkEventKind.CREATED,
                    link_number=link.link_number,
                    actor=self.actor,
                    transaction_line_id=line.id,
                    statement_id=line.statement_id,
                    family=family,
                    entity_id=entity_id,
                    method=method,
                    score=score,
                    details=notes,
                )

        logger.info(
            "Linked line %s to %s %s (%s, score=%s) as %s",
            line.line_number,
            family.value,
            entity_id,
            method.value,
            score,
            link.link_number,
        )
        return link

    def _remove(self, link: Link, details: Optional[str] = None) -> None:
        self.callbacks[link.family].on_unlink(link)
        self.db.delete_link(link.id)
        self.db.record_link_event(
            kind=LinkEventKind.DELETED,
            link_number=link.link_number,
            actor=self.actor,
            transaction_line_id=link.transaction_line_id,
            statement_id=link.statement_id,
            family=link.family,
            entity_id=link.entity_id,
            method=link.method,
            score=link.score,
            details=details,
        )

    def delete_link(self, link_id: int, reason: Optional[str] = None) -> Link:
        """Remove a link and revert its effect on the linked record.

        The deletion is kept in the audit trail with actor and time.

        Returns:
            The removed link

        Raises:
            NotFoundError: If the link does not exist
            RepositoryError: If the backing store fails; nothing is changed
        """
        with store_errors(f"unlink {link_id}"):
            with self.db.unit_of_work():
                link = self.db.get_link(link_id)
                if link is None:
                    raise NotFoundError(link_not_found(link_id))
                self._remove(link, details=reason)

        logger.info(
            "Unlinked %s (%s %s) by %s", link.link_number, link.family.value, link.entity_id, self.actor
        )
        return link

    def get_link(self, link_id: int) -> Optional[Link]:
        return self.db.get_link(link_id)

    def links_for_line(self, line_id: int) -> list[Link]:
        return self.db.list_links(transaction_line_id=line_id)

    def links_for_statement(self, statement_id: int) -> list[Link]:
        """Every link of a statement, for audit and export."""
        return self.db.list_links(statement_id=statement_id)

    def links_for_entity(self, family: Family, entity_id: int) -> list[Link]:
        """Every link pointing to one record."""
        return self.db.list_links(family=family, entity_id=entity_id)

    def history(
        self, statement_id: Optional[int] = None, link_number: Optional[str] = None
    ) -> list[LinkEvent]:
        """Audit events, oldest first."""
        return self.db.list_link_events(statement_id=statement_id, link_number=link_number)
