"""Audit logging for state transitions applied by the updater."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Literal

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "updater-events.jsonl"
_default_secret_paths: list[Path] = [
    Path("/run/secrets/audit_log_signing_key"),
    Path(".runtime/secrets/audit_log_signing_key"),
]

EventType = Literal[
    # Keycloak
    "user_create", "user_enable", "user_disable", "user_update",
    "role_create", "role_grant", "role_revoke", "role_composite_add", "role_composite_remove",
    "client_configure", "realm_configure",
    # Wekan
    "board_user_create", "board_user_enable", "board_user_disable",
    "board_join", "board_leave", "board_admin",
    "rule_create", "rule_delete", "card_member_add", "card_member_remove",
]


def configure(log_dir: str | Path) -> None:
    """Point the audit trail at ``log_dir`` (from the ``audit`` config section)."""
    global AUDIT_LOG_DIR, AUDIT_LOG_FILE
    AUDIT_LOG_DIR = Path(log_dir)
    AUDIT_LOG_FILE = AUDIT_LOG_DIR / "updater-events.jsonl"


def _get_signing_key() -> bytes:
    """Signing key: env var first, then secret files. Empty key disables signatures."""
    key = os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip()
    if key:
        return key.encode("utf-8")
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    paths = ([Path(key_file)] if key_file else []) + _default_secret_paths
    for path in paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    event_type: EventType,
    target: str,
    *,
    system: str = "keycloak",
    operator: str = "keycloak-updater",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append one signed event to the audit trail.

    Args:
        event_type: transition applied
        target: username (or board slug / client id) affected
        system: "keycloak" or "wekan"
        operator: who performed the operation
        details: additional context (roles, board, label...)
        success: whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "system": system,
        "target": target,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_event(
    event_type: EventType,
    target: str,
    *,
    system: str = "keycloak",
    operator: str = "keycloak-updater",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Same as log_event() but never raises.

    A failing audit write must not interrupt a reconciliation run; the
    failure is reported on stderr instead.

    Returns:
        True if the event was written, False otherwise
    """
    try:
        log_event(
            event_type,
            target,
            system=system,
            operator=operator,
            details=details,
            success=success,
        )
        return True
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {event_type} event for {target}: {e}",
            file=sys.stderr
        )
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid
