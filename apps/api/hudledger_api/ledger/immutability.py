"""ORM-level write-once enforcement for ledger entries.

Three paths can change a persisted row through SQLAlchemy:

  flush of a dirty instance   -> before_update (mapper event)
  session.delete(instance)    -> before_delete (mapper event)
  update()/delete() statement -> do_orm_execute (session event)

All three are blocked for ``LedgerEntry``. The only exceptions are an instance
flush that flips ``is_period_closed`` from False to True and the bulk UPDATE
issued by the period-close statement, which is tagged with
``PERIOD_CLOSE_OPTION``. Raw SQL bypasses these listeners; the chain
verifier is what catches that.
"""

import logging

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from hudledger_api.errors import ImmutableEntryError
from hudledger_api.models.ledger import LedgerEntry

logger = logging.getLogger(__name__)

PERIOD_CLOSE_OPTION = "ledger_period_close"
MUTABLE_FIELD = "is_period_closed"


def _changed_fields(target) -> dict:
    changed = {}
    for attr in inspect(target).mapper.column_attrs:
        history = get_history(target, attr.key)
        if history.has_changes():
            changed[attr.key] = history
    return changed


@event.listens_for(LedgerEntry, "before_update")
def _block_entry_update(mapper, connection, target):
    changed = _changed_fields(target)
    if not changed:
        return

    closing = changed.get(MUTABLE_FIELD)
    only_close_flag = set(changed) == {MUTABLE_FIELD}
    if only_close_flag and list(closing.added) == [True] and True not in list(closing.deleted):
        return

    logger.error(
        "Blocked ledger entry update",
        extra={"entry_id": target.id, "fields": sorted(changed)},
    )
    raise ImmutableEntryError(target.id, "UPDATE", list(changed))


@event.listens_for(LedgerEntry, "before_delete")
def _block_entry_delete(mapper, connection, target):
    logger.error("Blocked ledger entry delete", extra={"entry_id": target.id})
    raise ImmutableEntryError(target.id, "DELETE")


@event.listens_for(Session, "do_orm_execute")
def _block_bulk_statements(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return

    mapper = orm_execute_state.bind_mapper
    if mapper is None or mapper.class_ is not LedgerEntry:
        return

    options = orm_execute_state.statement.get_execution_options()
    if orm_execute_state.is_update and options.get(PERIOD_CLOSE_OPTION):
        return

    operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
    logger.error("Blocked bulk ledger statement", extra={"operation": operation})
    raise ImmutableEntryError(None, f"bulk {operation}")
