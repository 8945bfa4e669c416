"""Reconciliation of a bank statement against the back-office records.

A run walks the lines of one statement in order. For each line that has no
link yet it loads fresh candidates, scores them, and links the winner of
each slot. Every line is its own unit of work: a failure rolls back that
line only and the run moves on; a cancelled run keeps the lines already
committed.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from rapprochement.database.base import Database
from rapprochement.domain.entities import (
    Family,
    LineState,
    Link,
    LinkMethod,
    MatchResult,
    ReconciliationLevel,
    Slot,
    TransactionLine,
)
from rapprochement.domain.errors import (
    DomainError,
    NotFoundError,
    ValidationError,
    line_not_found,
    statement_not_found,
)
from rapprochement.domain.ledger import LinkLedger
from rapprochement.domain.matcher import MatcherSettings, score_line
from rapprochement.domain.repository import EntityRepository
from rapprochement.domain.rules import RuleService

logger = logging.getLogger(__name__)


def reconciliation_level(links: list[Link]) -> ReconciliationLevel:
    """Two-axis status of a line: invoice slot and partner slot."""
    slots = {link.slot for link in links}
    if len(slots) >= 2:
        return ReconciliationLevel.FULL
    if slots:
        return ReconciliationLevel.PARTIAL
    return ReconciliationLevel.NONE


@dataclass
class LineOutcome:
    """What a run did with one transaction line."""

    line_id: int
    line_number: str
    state: LineState
    level: ReconciliationLevel
    created_links: list[Link] = field(default_factory=list)
    match: Optional[MatchResult] = None
    skipped: bool = False
    error: Optional[str] = None


@dataclass
class BatchResult:
    """Outcome of a reconciliation run over one statement."""

    statement_id: int
    outcomes: list[LineOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def linked(self) -> int:
        return sum(1 for o in self.outcomes if o.created_links)

    @property
    def suggested(self) -> int:
        return sum(1 for o in self.outcomes if o.state is LineState.SUGGESTED)

    @property
    def unmatched(self) -> int:
        return sum(1 for o in self.outcomes if o.state is LineState.UNMATCHED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def errors(self) -> list[LineOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    @property
    def created_links(self) -> list[Link]:
        return [link for o in self.outcomes for link in o.created_links]


class ReconciliationSession:
    """Runs automatic reconciliation and applies manual decisions."""

    def __init__(
        self,
        db: Database,
        settings: Optional[MatcherSettings] = None,
        actor: str = "system",
        ledger: Optional[LinkLedger] = None,
    ):
        """Initialize a reconciliation session.

        Args:
            db: Database instance
            settings: Matching thresholds (defaults to MatcherSettings())
            actor: Name recorded on links and audit events
            ledger: Link ledger to write to (defaults to one built on db)
        """
        self.db = db
        self.settings = settings or MatcherSettings()
        self.actor = actor
        self.ledger = ledger or LinkLedger(db, actor=actor)
        self.repository = EntityRepository(db)
        self.rules = RuleService(db)
        self._suggestions: dict[int, MatchResult] = {}

    def _get_line(self, line_id: int) -> TransactionLine:
        line = self.db.get_transaction_line(line_id)
        if line is None:
            raise NotFoundError(line_not_found(line_id))
        return line

    def run(
        self, statement_id: int, cancel_event: Optional[threading.Event] = None
    ) -> BatchResult:
        """Reconcile every line of a statement that has no link yet.

        Lines already linked (automatically or manually) are left untouched,
        so running twice gives the same links as running once.

        Args:
            statement_id: Statement to process
            cancel_event: Checked between lines; when set the run stops

        Returns:
            BatchResult with one outcome per line processed

        Raises:
            NotFoundError: If the statement does not exist
            MalformedRuleError: If an active rule cannot be evaluated
        """
        if self.db.get_statement(statement_id) is None:
            raise NotFoundError(statement_not_found(statement_id))

        rules = self.rules.active_rules()
        lines = self.db.list_transaction_lines(statement_id)
        result = BatchResult(statement_id=statement_id)
        logger.info(
            "Reconciling statement %s: %d lines, %d active rules",
            statement_id,
            len(lines),
            len(rules),
        )

        for line in lines:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.warning("Reconciliation of statement %s cancelled", statement_id)
                break

            existing = self.ledger.links_for_line(line.id)
            if existing:
                result.outcomes.append(
                    LineOutcome(
                        line_id=line.id,
                        line_number=line.line_number,
                        state=LineState.LINKED,
                        level=reconciliation_level(existing),
                        skipped=True,
                    )
                )
                continue

            result.outcomes.append(self._reconcile_line(line, rules))

        logger.info(
            "Statement %s: %d linked, %d suggested, %d unmatched, %d skipped, %d errors",
            statement_id,
            result.linked,
            result.suggested,
            result.unmatched,
            result.skipped,
            len(result.errors),
        )
        return result

    def _reconcile_line(self, line: TransactionLine, rules) -> LineOutcome:
        match: Optional[MatchResult] = None
        try:
            # Candidates are reloaded per line so a record consumed by an
            # earlier line is no longer offered.
            pools = self.repository.candidate_pools()
            match = score_line(line, rules, pools, self.settings)
            created = []
            with self.db.unit_of_work():
                for slot in Slot:
                    winner = match.slot_winners().get(slot)
                    if winner is None:
                        continue
                    created.append(
                        self.ledger.create_link(
                            line,
                            winner.family,
                            winner.entity_id,
                            LinkMethod.AUTO,
                            score=winner.total_score,
                        )
                    )
        except (DomainError, SQLAlchemyError) as e:
            self._suggestions.pop(line.id, None)
            logger.warning("Line %s could not be reconciled: %s", line.line_number, e)
            return LineOutcome(
                line_id=line.id,
                line_number=line.line_number,
                state=LineState.UNMATCHED,
                level=ReconciliationLevel.NONE,
                match=match,
                error=str(e),
            )

        self._suggestions[line.id] = match
        if created:
            state = LineState.LINKED
        elif match.has_suggestions:
            state = LineState.SUGGESTED
        else:
            state = LineState.UNMATCHED
        return LineOutcome(
            line_id=line.id,
            line_number=line.line_number,
            state=state,
            level=reconciliation_level(created),
            created_links=created,
            match=match,
        )

    def score(self, line_id: int) -> MatchResult:
        """Score one line without linking anything (for review screens)."""
        line = self._get_line(line_id)
        return score_line(
            line, self.rules.active_rules(), self.repository.candidate_pools(), self.settings
        )

    def suggestions(self, line_id: int) -> Optional[MatchResult]:
        """Scores computed for a line during this session's last run."""
        return self._suggestions.get(line_id)

    def line_state(self, line_id: int) -> LineState:
        if self.ledger.links_for_line(line_id):
            return LineState.LINKED
        suggestion = self._suggestions.get(line_id)
        if suggestion is not None and suggestion.has_suggestions:
            return LineState.SUGGESTED
        return LineState.UNMATCHED

    def line_level(self, line_id: int) -> ReconciliationLevel:
        return reconciliation_level(self.ledger.links_for_line(line_id))

    def manual_link(
        self,
        line_id: int,
        family: Union[Family, str],
        entity_id: int,
        replace: bool = False,
        notes: Optional[str] = None,
    ) -> Link:
        """Link a line to a record chosen by an operator.

        Scoring is bypassed, but the one-link-per-slot rule still applies.

        Args:
            line_id: Transaction line ID
            family: Family of the record
            entity_id: Record ID
            replace: Replace the link currently occupying the slot
            notes: Operator notes kept in the audit trail

        Raises:
            ValidationError: If the line, family or record is invalid
            ConflictError: If the slot is taken (without replace), or the
                invoice is already reconciled elsewhere
        """
        line = self.db.get_transaction_line(line_id)
        if line is None:
            raise ValidationError(line_not_found(line_id))
        try:
            family = Family(family.upper() if isinstance(family, str) else family)
        except ValueError as e:
            raise ValidationError(f"Unknown family '{family}'") from e
        try:
            self.repository.get_candidate(family, entity_id)
        except NotFoundError as e:
            raise ValidationError(str(e)) from e

        link = self.ledger.create_link(
            line, family, entity_id, LinkMethod.MANUAL, score=None, replace=replace, notes=notes
        )
        self._suggestions.pop(line.id, None)
        return link

    def unlink(self, link_id: int, reason: Optional[str] = None) -> Link:
        """Remove a link; only that link's slot is affected."""
        link = self.ledger.delete_link(link_id, reason=reason)
        self._suggestions.pop(link.transaction_line_id, None)
        return link

    def statement_summary(self, statement_id: int) -> dict[str, int]:
        """Counts of fully, partially and not reconciled lines of a statement."""
        if self.db.get_statement(statement_id) is None:
            raise NotFoundError(statement_not_found(statement_id))
        lines = self.db.list_transaction_lines(statement_id)
        links = self.ledger.links_for_statement(statement_id)
        by_line: dict[int, list[Link]] = {}
        for link in links:
            by_line.setdefault(link.transaction_line_id, []).append(link)

        summary = {"lines": len(lines), "links": len(links)}
        for level in ReconciliationLevel:
            summary[level.value.lower()] = 0
        for line in lines:
            summary[reconciliation_level(by_line.get(line.id, [])).value.lower()] += 1
        return summary
