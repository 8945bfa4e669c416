"""Domain layer for rapprochement application."""

# Services are imported lazily: the database layer imports the domain
# entities, and the services import the database layer.
_SERVICES = {
    "RuleService": "rapprochement.domain.rules",
    "RecordService": "rapprochement.domain.records",
    "StatementService": "rapprochement.domain.statement",
    "EntityRepository": "rapprochement.domain.repository",
    "LinkLedger": "rapprochement.domain.ledger",
    "ReconciliationSession": "rapprochement.domain.session",
    "CreditNoteService": "rapprochement.domain.credit_notes",
}

__all__ = list(_SERVICES)


def __getattr__(name):
    if name in _SERVICES:
        from importlib import import_module

        return getattr(import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
