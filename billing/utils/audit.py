"""Audit logging helper utilities."""
from __future__ import annotations

import hashlib
from typing import Any, Mapping

from sqlalchemy.orm import Session

from billing.models.audit import AuditLog
from billing.utils.time import utcnow


SECRET_KEYS = {"access_token", "client_secret", "webhook_secret", "token"}
SENSITIVE_KEYS = SECRET_KEYS | {"email", "payer_email", "phone", "payment_link"}


def fingerprint(secret: str | None) -> str | None:
    """Return a short, non-reversible marker for a secret."""

    if not secret:
        return None
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()[:8]
    return f"sha256:{digest}"


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in SECRET_KEYS:
        return fingerprint(str(value))

    if key in {"email", "payer_email"}:
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "phone":
        digits = "".join(ch for ch in str(value) if ch.isdigit())
        return f"***{digits[-2:]}" if digits else "***"

    if key == "payment_link":
        text = str(value)
        base = text.split("?", 1)[0]
        return f"{base}?***" if "?" in text else base

    return value


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with secrets and obvious PII masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masked_value = _mask_value(key, value) if key in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    data: dict | None = None,
) -> None:
    """Stage an audit entry in the shared AuditLog table (caller commits)."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


__all__ = ["fingerprint", "sanitize_payload_for_audit", "log_audit"]
