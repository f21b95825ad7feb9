from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# credentials and private note content never reach the audit trail
_SENSITIVE_META = frozenset({"password", "new_password", "text"})
_DISABLED_VALUES = frozenset({"0", "false", "no", "off"})


def events_enabled() -> bool:
    return os.getenv("PAIRNOTES_EVENT_LOG", "1").strip().lower() not in _DISABLED_VALUES


def events_dir() -> Path:
    return Path(os.getenv("PAIRNOTES_EVENT_LOG_DIR", "logs/user_events"))


def _scrub(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    return {k: "<redacted>" if k in _SENSITIVE_META else v for k, v in (meta or {}).items()}


def log_user_event(
    *,
    user_key: str | None,
    event: str,
    meta: Mapping[str, Any] | None = None,
) -> bool:
    """
    Append one line to a partner's audit trail, `<events_dir>/<user_key>.jsonl`.

    Events logged before anyone signs in go to `anonymous.jsonl`. The trail is written
    after the action has been persisted, so a failed append is logged and reported by
    returning False; it never fails the action itself.
    """
    if not events_enabled():
        return False

    owner = user_key or "anonymous"
    line = json.dumps(
        {
            "ts": datetime.now(timezone.utc).isoformat(),
            "user_key": owner,
            "event": event,
            "meta": _scrub(meta),
        },
        ensure_ascii=False,
    )
    target = events_dir() / f"{owner}.jsonl"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
    except OSError as exc:
        logger.warning("Cannot append %s event to %s: %s", event, target, exc)
        return False
    return True
