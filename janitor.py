import logging
import threading
import time
from datetime import timedelta


def sweep_sessions(settings: dict, registry) -> int:
    """Prune offline sessions idle past `session_retention_minutes`. Returns count."""
    try:
        retention_min = int(settings.get("session_retention_minutes", 24 * 60))
    except (TypeError, ValueError):
        retention_min = 24 * 60
    retention_min = max(1, min(retention_min, 60 * 24 * 365))
    return registry.prune_offline(timedelta(minutes=retention_min))


def start_janitor(settings: dict, registry):
    """Start a lightweight background cleanup loop.

    Offline sessions are kept for "last seen" display; this drops the ones
    nobody has looked at for a while. Muted/blocked sessions are never pruned.
    """

    def _loop():
        while True:
            # Re-read settings each cycle so changes take effect live.
            try:
                interval = int(settings.get("janitor_interval_seconds", 60))
            except (TypeError, ValueError):
                interval = 60
            interval = max(10, min(interval, 3600))

            try:
                n = sweep_sessions(settings, registry)
                if n:
                    logging.info("[JANITOR] pruned %s stale offline sessions", n)
            except Exception:
                logging.exception("[JANITOR] session cleanup error")

            time.sleep(interval)

    t = threading.Thread(target=_loop, name="roomchat_janitor", daemon=True)
    t.start()
    return t
