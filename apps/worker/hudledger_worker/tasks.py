"""Celery tasks for scheduled ledger checks."""

import logging
from typing import Optional

from celery import Task
from sqlalchemy.orm import Session

from hudledger_api.ledger.service import LedgerService
from hudledger_api.models import Organization
from hudledger_api.services.audit import AuditAction, log_event
from hudledger_worker.celery_app import celery_app
from hudledger_worker.db import get_db

logger = logging.getLogger(__name__)


class DatabaseTask(Task):
    """Task with database session."""

    _db: Optional[Session] = None

    @property
    def db(self) -> Session:
        """Get database session."""
        if self._db is None:
            self._db = next(get_db())
        return self._db

    def after_return(self, *args, **kwargs):
        """Close database session after task."""
        if self._db:
            self._db.close()
            self._db = None


def verify_all_chains(db: Session) -> dict:
    """Verify every organization's chain and audit each broken one."""
    service = LedgerService(db)
    organization_ids = [row[0] for row in db.query(Organization.id).order_by(Organization.id).all()]
    broken = []

    for organization_id in organization_ids:
        result = service.verify_chain(organization_id)
        if result.is_valid:
            continue

        broken.append(
            {
                "organization_id": organization_id,
                "first_broken_entry_id": result.first_broken_entry_id,
                "first_broken_sequence": result.first_broken_sequence,
                "failure": result.failure,
            }
        )
        log_event(
            db,
            AuditAction.LEDGER_INTEGRITY_VIOLATION,
            organization_id=organization_id,
            resource_type="ledger_chain",
            resource_id=result.first_broken_entry_id,
            metadata={"failure": result.failure, "source": "nightly_verification"},
        )

    if broken:
        logger.critical(
            "Nightly verification found broken ledger chains",
            extra={"broken_organizations": [item["organization_id"] for item in broken]},
        )
    else:
        logger.info("Nightly verification passed", extra={"organizations": len(organization_ids)})

    return {"verified": len(organization_ids), "broken": broken}


@celery_app.task(base=DatabaseTask, bind=True)
def verify_ledger_chains(self):
    """Nightly integrity sweep over all ledger chains."""
    return verify_all_chains(self.db)
