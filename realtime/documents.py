"""Socket.IO handlers: document summaries.

A user asks for a summary of an uploaded PDF; the room sees
``summaryPending`` right away and ``documentSummary`` (or ``summaryError``)
whenever the external summarizer answers. The summarizer runs as a
background task so it never holds up message traffic.
"""

from __future__ import annotations

import logging
import threading

from flask import request

from errors import ChatError, UpstreamFailure, ValidationError
from moderation import Action, require


class SummaryRelay:
    def __init__(self, summarizer, bus, locks, spawn):
        self.summarizer = summarizer
        self.bus = bus
        self.locks = locks
        self.spawn = spawn
        self._inflight: set[tuple[str, str]] = set()
        self._guard = threading.Lock()

    def request(self, session, document_id) -> bool:
        """Start (or join) a summary for `document_id` in the session's room.

        Returns False when summaries are disabled; the actor gets a
        ``summaryError`` in that case.
        """
        document_id = str(document_id or "").strip()
        if not document_id:
            raise ValidationError("Missing document id.")
        room_id = str(session.room_id)

        with self.locks.hold(room_id):
            require(session, Action.SUMMARIZE)
            if self.summarizer is None or not self.summarizer.enabled:
                self.bus.send(
                    session.connection_id,
                    "summaryError",
                    {"documentId": document_id, "message": "Document summaries are not enabled on this server."},
                )
                return False
            key = (room_id, document_id)
            with self._guard:
                if key in self._inflight:
                    return True
                self._inflight.add(key)
            self.bus.publish(room_id, "summaryPending", {"documentId": document_id, "requestedBy": session.username})

        self.spawn(self._run, room_id, document_id, session.username)
        return True

    def _run(self, room_id: str, document_id: str, requested_by: str) -> None:
        try:
            summary = self.summarizer.summarize(document_id)
        except UpstreamFailure as e:
            logging.warning("Summary of %s for room %s failed: %s", document_id, room_id, e.message)
            event, payload = "summaryError", {"documentId": document_id, "message": e.message}
        except Exception:
            logging.exception("Summary of %s for room %s crashed", document_id, room_id)
            event, payload = "summaryError", {"documentId": document_id, "message": "Summary failed."}
        else:
            event, payload = "documentSummary", {
                "documentId": document_id,
                "summary": summary,
                "requestedBy": requested_by,
            }

        with self.locks.hold(room_id):
            with self._guard:
                self._inflight.discard((room_id, document_id))
            self.bus.publish(room_id, event, payload)


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    @socketio.on("summarizeDocument")
    def handle_summarize_document(data=None):
        try:
            session = ctx.require_session(request.sid)
            doc_id = data.get("documentId") if isinstance(data, dict) else data
            started = ctx.relay.request(session, doc_id)
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": started}
