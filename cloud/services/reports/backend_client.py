"""
Network access to the fleet backend.

All report, schedule, device and route traffic goes through ``BackendClient``
so the pipeline can be exercised against a fake. Calls are made with a
``requests`` session on a worker thread and awaited by the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from console_config import ConsoleConfig
from report_errors import NetworkFailure
from report_query import Query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackendResponse:
    status_code: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return json.loads(self.text) if self.text else None


class BackendClient:
    def __init__(self, config: ConsoleConfig, session: Optional[requests.Session] = None):
        self.base_url = config.backend_url.rstrip("/")
        self.timeout = config.backend_timeout
        self.session = session or requests.Session()
        if config.backend_token:
            self.session.headers["Authorization"] = f"Bearer {config.backend_token}"

    def url(self, path: str, query: Optional[Union[Query, str]] = None) -> str:
        url = f"{self.base_url}{path}"
        if query is None:
            return url
        encoded = query.encode() if isinstance(query, Query) else str(query)
        return f"{url}?{encoded}" if encoded else url

    def _send(self, method: str, path: str, **kwargs: Any) -> BackendResponse:
        url = self.url(path)
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning(f"Backend {method} {path} failed: {exc}")
            raise NetworkFailure(str(exc)) from exc
        return BackendResponse(resp.status_code, resp.text)

    async def get(
        self,
        path: str,
        query: Optional[Query] = None,
        accept_json: bool = False,
    ) -> BackendResponse:
        headers = {"Accept": "application/json"} if accept_json else {}
        params = list(query.pairs) if query is not None else None
        return await asyncio.to_thread(self._send, "GET", path, params=params, headers=headers)

    async def post_json(self, path: str, payload: Any) -> BackendResponse:
        return await asyncio.to_thread(
            self._send,
            "POST",
            path,
            json=payload,
            headers={"Accept": "application/json"},
        )

    async def fetch_devices(self) -> List[Dict[str, Any]]:
        resp = await self.get("/api/devices", accept_json=True)
        if not resp.ok:
            raise NetworkFailure(resp.text, resp.status_code)
        return resp.json() or []

    async def schedule_report(
        self,
        device_ids: Sequence[Any],
        group_ids: Sequence[Any],
        report: Dict[str, Any],
    ) -> Optional[str]:
        """Persist a scheduled report and link it to devices and groups.

        Returns the backend error text, or None once everything is stored.
        """
        resp = await self.post_json("/api/reports", report)
        if not resp.ok:
            return resp.text or f"Backend returned {resp.status_code}"
        try:
            stored = resp.json()
        except ValueError:
            logger.warning(f"Scheduled report reply is not JSON: {resp.text[:200]}")
            return f"Invalid scheduled report reply: {resp.text[:200]}"
        report_id = stored.get("id") if isinstance(stored, dict) else None
        if report_id is None:
            return "Scheduled report reply has no id"
        for key, ids in (("deviceId", device_ids), ("groupId", group_ids)):
            if not ids:
                continue
            links = [{key: item, "reportId": report_id} for item in ids]
            link_resp = await self.post_json("/api/permissions/bulk", links)
            if not link_resp.ok:
                return link_resp.text or f"Backend returned {link_resp.status_code}"
        logger.info(f"Scheduled {report.get('type')} report {report_id}")
        return None
