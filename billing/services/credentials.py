"""Gateway credential storage, caching and configuration status."""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing.config import DEFAULT_GATEWAY, get_settings
from billing.models import GatewayCredential
from billing.utils.audit import fingerprint, log_audit
from billing.utils.errors import CredentialMissing, GatewayRejected, InvalidCredentials
from billing.utils.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - hints only
    from billing.schemas.payment_config import PaymentConfigUpdate
    from billing.services.gateway_mercadopago import AccountInfo

logger = logging.getLogger(__name__)


class PaymentConfigStatus(str, enum.Enum):
    """Configuration states surfaced to the teacher dashboard.

    ``LOADING`` is only meaningful to clients waiting on the first answer;
    the server never returns it.
    """

    LOADING = "loading"
    NOT_CONFIGURED = "not_configured"
    INVALID_CREDENTIALS = "invalid_credentials"
    INACTIVE = "inactive"
    CONFIGURED = "configured"


@dataclass(frozen=True)
class CredentialSnapshot:
    """Immutable copy of a credential row handed to gateway clients."""

    gateway_type: str
    access_token: str
    public_key: str | None = None
    is_sandbox: bool = False
    account_id: str | None = None
    account_nickname: str | None = None

    @classmethod
    def from_row(cls, row: GatewayCredential) -> "CredentialSnapshot":
        return cls(
            gateway_type=row.gateway_type,
            access_token=row.access_token,
            public_key=row.public_key,
            is_sandbox=row.is_sandbox,
            account_id=row.account_id,
            account_nickname=row.account_nickname,
        )


class CredentialCache:
    """Process-wide TTL cache of credential snapshots keyed by gateway type."""

    def __init__(self, ttl_seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, CredentialSnapshot]] = {}

    def get(self, gateway_type: str) -> CredentialSnapshot | None:
        with self._lock:
            entry = self._entries.get(gateway_type)
            if entry is None:
                return None
            stored_at, snapshot = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                self._entries.pop(gateway_type, None)
                return None
            return snapshot

    def put(self, snapshot: CredentialSnapshot) -> None:
        with self._lock:
            self._entries[snapshot.gateway_type] = (self._clock(), snapshot)

    def invalidate(self, gateway_type: str | None = None) -> None:
        with self._lock:
            if gateway_type is None:
                self._entries.clear()
            else:
                self._entries.pop(gateway_type, None)


credential_cache = CredentialCache(ttl_seconds=get_settings().CREDENTIAL_CACHE_TTL_SECONDS)


def _get_row(db: Session, gateway_type: str) -> GatewayCredential | None:
    stmt = select(GatewayCredential).where(GatewayCredential.gateway_type == gateway_type)
    return db.execute(stmt).scalar_one_or_none()


def get_active_credential(
    db: Session,
    gateway_type: str = DEFAULT_GATEWAY,
    *,
    cache: CredentialCache | None = None,
) -> CredentialSnapshot:
    """Return the usable credential for ``gateway_type`` or raise ``CredentialMissing``.

    Rows flagged inactive or invalid are treated as missing so callers fail
    before contacting the gateway.
    """

    cache = cache or credential_cache
    cached = cache.get(gateway_type)
    if cached is not None:
        return cached

    row = _get_row(db, gateway_type)
    if row is None or not row.is_active or not row.is_valid or not row.access_token:
        logger.warning(
            "No usable gateway credential",
            extra={"gateway_type": gateway_type, "present": row is not None},
        )
        raise CredentialMissing(
            "Payment gateway credentials are not configured.",
            details={"gateway_type": gateway_type},
        )

    snapshot = CredentialSnapshot.from_row(row)
    cache.put(snapshot)
    return snapshot


def configure_credential(
    db: Session,
    payload: "PaymentConfigUpdate",
    *,
    actor: str,
    verifier: Callable[[str], "AccountInfo"],
    cache: CredentialCache | None = None,
) -> GatewayCredential:
    """Validate ``payload.access_token`` with the gateway, then upsert the single row."""

    cache = cache or credential_cache
    access_token = payload.access_token.strip()
    try:
        account = verifier(access_token)
    except GatewayRejected as exc:
        logger.warning(
            "Gateway refused credential",
            extra={
                "gateway_type": payload.gateway_type,
                "status_code": exc.status_code,
                "token": fingerprint(access_token),
            },
        )
        raise InvalidCredentials(
            "The payment gateway rejected the access token.",
            details={"status_code": exc.status_code},
        ) from exc

    row = _get_row(db, payload.gateway_type)
    created = row is None
    if row is None:
        row = GatewayCredential(gateway_type=payload.gateway_type, access_token=access_token)
        db.add(row)

    row.access_token = access_token
    row.public_key = payload.public_key
    row.client_id = payload.client_id
    row.client_secret = payload.client_secret
    row.is_active = payload.is_active
    row.is_sandbox = payload.is_sandbox
    row.is_valid = True
    row.account_id = account.id
    row.account_nickname = account.nickname
    row.validated_at = utcnow()
    db.flush()

    log_audit(
        db,
        actor=actor,
        action="PAYMENT_CONFIG_CREATED" if created else "PAYMENT_CONFIG_UPDATED",
        entity="GatewayCredential",
        entity_id=row.id,
        data={
            "gateway_type": row.gateway_type,
            "access_token": access_token,
            "client_secret": payload.client_secret,
            "is_sandbox": row.is_sandbox,
            "is_active": row.is_active,
            "account_id": row.account_id,
            "account_nickname": row.account_nickname,
        },
    )
    db.commit()
    db.refresh(row)
    cache.invalidate(row.gateway_type)

    logger.info(
        "Gateway credential configured",
        extra={
            "gateway_type": row.gateway_type,
            "account_id": row.account_id,
            "sandbox": row.is_sandbox,
            "token": fingerprint(access_token),
        },
    )
    return row


def mark_credential_invalid(
    db: Session, gateway_type: str = DEFAULT_GATEWAY, *, cache: CredentialCache | None = None
) -> None:
    """Flag the stored credential as rejected by the gateway."""

    cache = cache or credential_cache
    row = _get_row(db, gateway_type)
    if row is not None and row.is_valid:
        row.is_valid = False
        db.commit()
        logger.error("Gateway credential marked invalid", extra={"gateway_type": gateway_type})
    cache.invalidate(gateway_type)


def get_payment_config_status(db: Session, gateway_type: str = DEFAULT_GATEWAY) -> PaymentConfigStatus:
    row = _get_row(db, gateway_type)
    if row is None:
        return PaymentConfigStatus.NOT_CONFIGURED
    if not row.access_token or not row.is_valid:
        return PaymentConfigStatus.INVALID_CREDENTIALS
    if not row.is_active:
        return PaymentConfigStatus.INACTIVE
    return PaymentConfigStatus.CONFIGURED


__all__ = [
    "CredentialCache",
    "CredentialSnapshot",
    "PaymentConfigStatus",
    "configure_credential",
    "credential_cache",
    "get_active_credential",
    "get_payment_config_status",
    "mark_credential_invalid",
]
