"""secrets_policy.py

Whether RoomChat may persist *secrets* into server_config.json.

In production secrets usually live in environment variables, not in a config
file that may be copied or committed. Persistence stays on by default.

Disable persistence:
  export ROOMCHAT_PERSIST_SECRETS=0
"""

from __future__ import annotations

import os
from typing import Any, Dict


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return default


def persist_secrets_enabled() -> bool:
    return _env_bool("ROOMCHAT_PERSIST_SECRETS", True)


# Top-level keys in server_config.json that are treated as secrets.
SECRET_SETTING_KEYS = {
    "secret_key",
    # DSN usually carries a password
    "database_url",
    "summarizer_api_key",
}


def scrub_secrets_for_persist(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of settings with secret keys removed if persistence is disabled."""
    out = dict(settings)
    if persist_secrets_enabled():
        return out
    for k in SECRET_SETTING_KEYS:
        out.pop(k, None)
    return out
