"""
Reference code generation.

Format: ``<CATEGORY>-<YYYYMMDD>-<NNNN>`` (e.g. ``CM-20261018-0007``), one
counter per category per UTC day held in ``reference_sequences``. The
counter row is bumped inside the transaction that creates the ticket;
a concurrent first insert of the same scope surfaces as an IntegrityError
on the savepoint and is retried against the row the other writer created.
The ``tickets.reference_code`` UNIQUE constraint is the final safety net.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from fieldops.core.exceptions import PersistenceError
from fieldops.models import db
from fieldops.models.ticket import ReferenceSequence
from fieldops.utils.helpers import as_utc

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 3


def reference_scope(category: str, at: datetime | None = None) -> str:
    day = as_utc(at) if at else datetime.now(timezone.utc)
    return f"{category.upper()}-{day:%Y%m%d}"


def _reserve(scope: str) -> int:
    result = db.session.execute(
        update(ReferenceSequence)
        .where(ReferenceSequence.scope == scope)
        .values(last_value=ReferenceSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        with db.session.begin_nested():
            db.session.add(ReferenceSequence(scope=scope, last_value=1))
        return 1
    return db.session.execute(
        select(ReferenceSequence.last_value).where(ReferenceSequence.scope == scope)
    ).scalar_one()


def next_reference_code(category: str, at: datetime | None = None) -> str:
    """Reserve and return the next reference code for *category* on *at*'s day."""
    scope = reference_scope(category, at)
    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            value = _reserve(scope)
        except IntegrityError:
            logger.info("Reference scope %s created concurrently, retrying (attempt %d)", scope, attempt)
            continue
        return f"{scope}-{value:04d}"
    raise PersistenceError(f"Could not reserve a reference code for scope {scope}")


def jobcard_number_for(reference_code: str) -> str:
    """Job-card identifier generated when a ticket closes."""
    return f"JC-{reference_code}"
