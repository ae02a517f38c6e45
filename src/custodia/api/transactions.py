"""Transaction scope for routers that write through the services directly.

The workflow service owns its own transactions. Stock ledger and return
writes run inside ``write_transaction``: commit on success, rollback on any
failure, with database errors turned into retryable domain errors.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from custodia.services.errors import ConflictError, CustodyError, TransientPersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def write_transaction(db: AsyncSession) -> AsyncIterator[None]:
    """Commit the writes of one request, or roll all of them back.

    Raises:
        ConflictError: A concurrent transaction changed a lot first.
        TransientPersistenceError: The database failed; nothing was written.
    """
    try:
        yield
        await db.commit()
    except CustodyError:
        await db.rollback()
        raise
    except (IntegrityError, StaleDataError) as exc:
        await db.rollback()
        raise ConflictError(
            "Lot was modified concurrently; retry from a fresh read",
            {"cause": type(exc).__name__},
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception(
            "Persistence failure; transaction rolled back",
            extra={"cause": type(exc).__name__},
        )
        raise TransientPersistenceError(
            "Persistence failure; the operation was rolled back",
            {"cause": type(exc).__name__},
        ) from exc
