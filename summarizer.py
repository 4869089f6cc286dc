"""
Document summarizer client.

The summarizer is an external HTTP service that owns PDF storage, text
extraction and the model call. RoomChat only triggers it:

    POST <summarizer_url>/api/pdfs/<documentId>/summarize

and expects a JSON body carrying the summary text. Anything else (non-2xx,
transport error, ``status: error``, no summary) is an UpstreamFailure.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests  # third-party

from errors import UpstreamFailure


@dataclass(frozen=True)
class SummarizerConfig:
    enabled: bool
    base_url: str
    timeout_seconds: float = 120.0
    api_key: str = ""


def get_summarizer_config(settings: Dict[str, Any]) -> SummarizerConfig:
    base_url = str(settings.get("summarizer_url") or "").strip().rstrip("/")
    try:
        timeout = float(settings.get("summarizer_timeout_seconds") or 120)
    except (TypeError, ValueError):
        timeout = 120.0
    return SummarizerConfig(
        enabled=bool(base_url) and bool(settings.get("summarizer_enabled", True)),
        base_url=base_url,
        timeout_seconds=max(1.0, timeout),
        api_key=str(settings.get("summarizer_api_key") or "").strip(),
    )


def _extract_summary(body: Any) -> Optional[str]:
    if isinstance(body, str):
        return body.strip() or None
    if not isinstance(body, dict):
        return None
    for key in ("summary", "text", "result"):
        val = body.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    data = body.get("data")
    if isinstance(data, dict):
        return _extract_summary(data)
    return None


class DocumentSummarizer:
    def __init__(self, config: SummarizerConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def summarize(self, document_id: str) -> str:
        if not self.config.enabled:
            raise UpstreamFailure("Document summaries are not enabled on this server.", document_id=document_id)

        url = f"{self.config.base_url}/api/pdfs/{quote(str(document_id), safe='')}/summarize"
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            resp = self._session.post(url, headers=headers, timeout=self.config.timeout_seconds)
        except requests.RequestException as e:
            raise UpstreamFailure(f"Summarizer unreachable: {e}", document_id=document_id) from e

        if not (200 <= resp.status_code < 300):
            raise UpstreamFailure(f"Summarizer returned HTTP {resp.status_code}", document_id=document_id)

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if isinstance(body, dict) and str(body.get("status") or "").lower() in {"error", "failed"}:
            msg = body.get("message") or body.get("error") or "Summarizer reported a failure"
            raise UpstreamFailure(str(msg), document_id=document_id)

        summary = _extract_summary(body)
        if not summary:
            raise UpstreamFailure("Summarizer returned no summary", document_id=document_id)
        return summary
