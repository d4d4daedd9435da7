from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tokenstore.exceptions import NotFoundError
from tokenstore.utils import redact

if TYPE_CHECKING:
    from tokenstore.models import StoredAccessToken
    from tokenstore.proto import CredentialStoreProtocol
    from tokenstore.transaction import TransactionResult

logger = logging.getLogger(__name__)


async def rotate_tokens(  # noqa: PLR0913
    store: CredentialStoreProtocol,
    *,
    old_refresh_token: str,
    new_access_token: str,
    new_token_data: StoredAccessToken,
    new_refresh_token: str,
    access_ttl_seconds: int,
    refresh_ttl_seconds: int,
) -> TransactionResult:
    """Replace the token pair behind ``old_refresh_token`` in one transaction.

    Either the old pair is gone and the new pair exists, or nothing changed. The
    commit fails if another rotation consumed ``old_refresh_token`` first.
    """
    old_access_token = await store.get_refresh_token(old_refresh_token)
    if old_access_token is None:
        msg = f"Refresh token not found: {redact(old_refresh_token)}"
        raise NotFoundError(msg)

    txn = await store.begin_transaction()
    try:
        await txn.delete_token(old_access_token)
        await txn.delete_refresh_token(old_refresh_token, require_existing=True)
        await txn.set_token(new_access_token, new_token_data, access_ttl_seconds)
        await txn.set_refresh_token(new_refresh_token, new_access_token, refresh_ttl_seconds)
    except Exception:
        await txn.rollback()
        raise
    result = await txn.commit()

    logger.info(
        "Rotated refresh token %s -> %s for client %s",
        redact(old_refresh_token),
        redact(new_refresh_token),
        new_token_data.client_id,
    )
    return result
