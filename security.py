#!/usr/bin/env python3
"""security.py

Audit logging for moderation actions.

Every event is logged; when a database is configured it is also written to
the audit_log table. A failed audit write never fails the action itself.
"""

from __future__ import annotations

import logging

import psycopg2

import database


def log_audit_event(actor: str, action: str, target: str | None = None, details: str | None = None) -> None:
    """Record an audit log entry."""
    logging.info("[audit] actor=%s action=%s target=%s details=%s", actor, action, target, details or "")
    if not database.is_configured():
        return
    try:
        database.insert_audit_event(actor, action, target, details)
    except psycopg2.Error as e:
        logging.error("Failed to write audit log (%s, %s, %s, %s): %s", actor, action, target, details, e)
