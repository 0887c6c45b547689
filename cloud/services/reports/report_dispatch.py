from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from report_errors import NetworkFailure, error_message_from_body
from report_kinds import ReportKind, get_report_kind
from report_query import FilterState, Query, build_query

logger = logging.getLogger(__name__)

ReportRow = Dict[str, Any]


class DispatchMode(enum.Enum):
    GENERATE = "generate"
    EXPORT = "export"
    MAIL = "mail"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DispatchMode":
        if not value:
            return cls.GENERATE
        return cls(value.strip().lower())


@dataclass(frozen=True)
class Rows:
    rows: List[ReportRow] = field(default_factory=list)


@dataclass(frozen=True)
class Redirected:
    url: str


@dataclass(frozen=True)
class Sent:
    pass


@dataclass(frozen=True)
class Failed:
    message: str
    status_code: Optional[int] = None


Outcome = Union[Rows, Redirected, Sent, Failed]


class ReportScreen:
    """State held by one report screen: loading flag, current rows, last error.

    Generate requests flip ``loading`` for their whole duration and replace
    ``rows`` on success. Overlapping submissions are not de-duplicated; the
    last one to complete wins. After ``close()`` late completions are dropped.
    """

    def __init__(self, client, kind: Union[str, ReportKind]):
        self.client = client
        self.kind = get_report_kind(kind)
        self.loading = False
        self.rows: List[ReportRow] = []
        self.error: Optional[str] = None
        self.closed = False

    def close(self) -> None:
        self.closed = True

    async def submit(self, state: FilterState, mode: Union[DispatchMode, str]) -> Outcome:
        query = build_query(state, self.kind)
        return await self.dispatch(query, mode)

    async def dispatch(
        self,
        query: Query,
        mode: Union[DispatchMode, str],
        kind: Optional[Union[str, ReportKind]] = None,
    ) -> Outcome:
        if not isinstance(mode, DispatchMode):
            mode = DispatchMode.parse(mode)
        kind = get_report_kind(kind) if kind is not None else self.kind

        if mode is DispatchMode.EXPORT:
            return Redirected(self.client.url(f"{kind.path}/xlsx", query))
        if mode is DispatchMode.MAIL:
            outcome = await self._mail(query, kind)
        else:
            outcome = await self._generate(query, kind)
        self._record(outcome)
        return outcome

    async def _mail(self, query: Query, kind: ReportKind) -> Outcome:
        try:
            resp = await self.client.get(f"{kind.path}/mail", query)
        except NetworkFailure as exc:
            return Failed(exc.message, exc.status_code)
        if not resp.ok:
            logger.warning(f"Mailing {kind.name} report failed ({resp.status_code})")
            return Failed(error_message_from_body(resp.text), resp.status_code)
        logger.info(f"Mailed {kind.name} report")
        return Sent()

    async def _generate(self, query: Query, kind: ReportKind) -> Outcome:
        self._set_loading(True)
        try:
            try:
                resp = await self.client.get(kind.path, query, accept_json=True)
            except NetworkFailure as exc:
                return Failed(exc.message, exc.status_code)
            if not resp.ok:
                logger.warning(f"Generating {kind.name} report failed ({resp.status_code}): {resp.text[:200]}")
                return Failed(error_message_from_body(resp.text), resp.status_code)
            try:
                rows = resp.json()
            except ValueError:
                return Failed(f"Invalid report payload: {resp.text[:200]}", resp.status_code)
            if rows is None:
                rows = []
            if not isinstance(rows, list):
                return Failed("Invalid report payload: expected a list of rows", resp.status_code)
            logger.info(f"Generated {kind.name} report with {len(rows)} rows")
            if not self.closed:
                self.rows = rows
            return Rows(rows)
        finally:
            self._set_loading(False)

    def _set_loading(self, value: bool) -> None:
        if not self.closed:
            self.loading = value

    def _record(self, outcome: Outcome) -> None:
        if self.closed:
            return
        self.error = outcome.message if isinstance(outcome, Failed) else None
