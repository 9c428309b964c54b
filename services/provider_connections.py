"""
Provider connection lookups and writes.

Webhooks identify users by the provider's own user id. This module maps
that id back to an internal user through an active provider_connection row,
and maintains those rows (auth, deauth, last sync, token refresh).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from core.config import settings
from models import ProviderConnection
from services.metric_ingest import dialect_insert
from services.token_encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def resolve_connection(db: Session, provider: str, external_user_id: Optional[str]) -> Optional[ProviderConnection]:
    """
    Find the active connection for a provider-side user id.

    Returns None when the id is missing or no active connection exists;
    callers acknowledge the webhook and write nothing in that case.
    """
    if not external_user_id:
        return None
    return (
        db.query(ProviderConnection)
        .filter(
            ProviderConnection.external_user_id == str(external_user_id),
            ProviderConnection.provider == provider.upper(),
            ProviderConnection.is_active.is_(True),
        )
        .first()
    )


def upsert_connection_from_auth(
    db: Session,
    user_id: UUID,
    provider: str,
    external_user_id: str,
    device_provider: Optional[str] = None,
) -> ProviderConnection:
    """
    Create or reactivate the (user, provider, device) connection after a successful auth.

    Each wearable linked through an aggregator keeps its own row, so linking
    a second device never replaces the first. Re-linking the same device
    gets a new provider-side id and updates its row in place.
    """
    provider = provider.upper()
    device = device_key(provider, device_provider)

    insert = dialect_insert(db)
    stmt = insert(ProviderConnection).values(
        user_id=user_id,
        provider=provider,
        external_user_id=str(external_user_id),
        device_provider=device,
        is_active=True,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "provider", "device_provider"],
        set_={
            "external_user_id": stmt.excluded.external_user_id,
            "is_active": True,
            "updated_at": func.now(),
        },
    )
    db.execute(stmt)
    db.flush()

    connection = (
        db.query(ProviderConnection)
        .filter(
            ProviderConnection.user_id == user_id,
            ProviderConnection.provider == provider,
            ProviderConnection.device_provider == device,
        )
        .populate_existing()
        .one()
    )
    logger.info(
        f"Connection upserted for user {user_id} ({provider}/{device})",
        extra={"extra_fields": {"user_id": str(user_id), "provider": provider, "device_provider": device}},
    )
    return connection


def device_key(provider: str, device_provider: Optional[str]) -> str:
    """Upper-case wearable name; direct connections use the provider itself."""
    if isinstance(device_provider, str) and device_provider.strip():
        return device_provider.strip().upper()
    return provider.upper()


def deactivate_connection(
    db: Session,
    provider: str,
    external_user_id: Optional[str],
    device_provider: Optional[str] = None,
) -> int:
    """
    Mark the connection for a provider-side user id inactive. Returns rows affected.

    The external id already names a single device; when the payload also
    names the wearable, only that device's row is matched.
    """
    if not external_user_id:
        return 0
    conditions = [
        ProviderConnection.external_user_id == str(external_user_id),
        ProviderConnection.provider == provider.upper(),
        ProviderConnection.is_active.is_(True),
    ]
    if isinstance(device_provider, str) and device_provider.strip():
        conditions.append(ProviderConnection.device_provider == device_key(provider, device_provider))
    result = db.execute(
        update(ProviderConnection)
        .where(*conditions)
        .values(is_active=False, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    count = result.rowcount or 0
    logger.info(f"Deactivated {count} {provider.upper()} connection(s) for external user {external_user_id}")
    return count


def touch_last_sync(db: Session, connection: ProviderConnection, when: Optional[datetime] = None) -> None:
    connection.last_sync_date = when or datetime.now(timezone.utc)
    db.flush()


def store_tokens(
    db: Session,
    connection: ProviderConnection,
    access_token: str,
    refresh_token: Optional[str],
    expires_in: Optional[int],
) -> None:
    connection.access_token = encrypt_token(access_token)
    if refresh_token:
        connection.refresh_token = encrypt_token(refresh_token)
    if expires_in:
        connection.token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
    db.flush()


def token_needs_refresh(connection: ProviderConnection, now: Optional[datetime] = None) -> bool:
    expires_at = as_utc(connection.token_expires_at)
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return expires_at - now <= timedelta(seconds=settings.WHOOP_TOKEN_REFRESH_MARGIN_S)


def get_access_token(db: Session, connection: ProviderConnection, client) -> Optional[str]:
    """
    Plain access token for outbound calls, refreshed first when close to expiry.

    Args:
        db: Database session (refreshed tokens are written back)
        connection: Active provider connection
        client: Provider client exposing refresh_access_token(refresh_token)

    Returns:
        Access token, or None if no usable token is available
    """
    if token_needs_refresh(connection):
        refresh_token = decrypt_token(connection.refresh_token)
        if refresh_token:
            tokens = client.refresh_access_token(refresh_token)
            if tokens and tokens.get("access_token"):
                store_tokens(
                    db,
                    connection,
                    tokens["access_token"],
                    tokens.get("refresh_token"),
                    tokens.get("expires_in"),
                )
                logger.info(f"Refreshed {connection.provider} access token for user {connection.user_id}")
            else:
                logger.warning(f"Token refresh failed for user {connection.user_id}; using stored token")
        else:
            logger.warning(f"No refresh token stored for user {connection.user_id}")

    return decrypt_token(connection.access_token)
