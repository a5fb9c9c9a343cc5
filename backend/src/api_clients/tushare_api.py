"""
Utilities for interacting with the Tushare Pro HTTP API.

This module only contains helpers responsible for fetching data from Tushare.
Business errors are returned inside the response envelope; transport errors
propagate as ``requests`` exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Protocol, Sequence

import pandas as pd
import requests

logger = logging.getLogger(__name__)


STOCK_BASIC_FIELDS: Sequence[str] = (
    "ts_code",
    "symbol",
    "name",
    "area",
    "industry",
    "market",
    "list_date",
    "is_hs",
)

DATE_COLUMNS: Sequence[str] = ("list_date",)

DAILY_TRADE_FIELDS: Sequence[str] = (
    "ts_code",
    "trade_date",
    "open",
    "high",
    "low",
    "close",
    "vol",
    "amount",
)

CODE_OK = 0
CODE_DAILY_LIMIT = -2001
CODE_INVALID_TOKEN = -2002
CODE_SERVICE_UNAVAILABLE = -2003
CODE_INVALID_PARAMS = -2004
CODE_RATE_LIMIT = -2005

_CONNECT_TIMEOUT = 5.0
_USER_AGENT = "Neostock/1.0"


@dataclass
class TushareResponse:
    """Tushare response envelope: ``{"code", "msg", "data": {"fields", "items"}}``."""

    code: int
    msg: str = ""
    fields: List[str] = field(default_factory=list)
    items: List[List[Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK

    @classmethod
    def error(cls, code: int, msg: str) -> "TushareResponse":
        return cls(code=code, msg=msg)

    @classmethod
    def from_payload(cls, payload: Any) -> "TushareResponse":
        if not isinstance(payload, dict) or "code" not in payload:
            raise ValueError("Invalid data format: response envelope missing 'code'")
        try:
            code = int(payload["code"])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid data format: bad response code {payload['code']!r}") from exc
        msg = str(payload.get("msg") or "")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("Invalid data structure: 'data' is not an object")
        fields = list(data.get("fields") or [])
        items = [list(item) for item in data.get("items") or []]
        return cls(code=code, msg=msg, fields=fields, items=items)

    def records(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.fields, item)) for item in self.items]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.items, columns=self.fields)


class TushareClient(Protocol):
    async def query(
        self,
        api_name: str,
        fields: Optional[Sequence[str]] = None,
        **params: Any,
    ) -> TushareResponse:
        ...


class TushareHttpClient:
    """Minimal async wrapper over the Tushare Pro HTTP endpoint."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = "http://api.tushare.pro",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not token:
            raise RuntimeError("Tushare token is required to query the Tushare API.")
        self._token = token
        self._base_url = base_url
        self._timeout = max(float(timeout), 1.0)
        self._session = session or requests.Session()

    def _post(self, api_name: str, fields: Optional[Sequence[str]], params: Dict[str, Any]) -> TushareResponse:
        payload = {
            "api_name": api_name,
            "token": self._token,
            "params": {key: value for key, value in params.items() if value is not None},
            "fields": ",".join(fields) if fields else "",
        }
        logger.debug("Tushare request %s params=%s", api_name, payload["params"])
        response = self._session.post(
            self._base_url,
            json=payload,
            headers={"User-Agent": _USER_AGENT},
            timeout=(_CONNECT_TIMEOUT, self._timeout),
        )
        response.raise_for_status()
        return TushareResponse.from_payload(response.json())

    async def query(
        self,
        api_name: str,
        fields: Optional[Sequence[str]] = None,
        **params: Any,
    ) -> TushareResponse:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._post, api_name, fields, params))

    async def stock_basic(self, **params: Any) -> TushareResponse:
        return await self.query("stock_basic", STOCK_BASIC_FIELDS, **params)

    async def daily(self, **params: Any) -> TushareResponse:
        return await self.query("daily", DAILY_TRADE_FIELDS, **params)

    def close(self) -> None:
        self._session.close()


__all__ = [
    "CODE_DAILY_LIMIT",
    "CODE_INVALID_PARAMS",
    "CODE_INVALID_TOKEN",
    "CODE_OK",
    "CODE_RATE_LIMIT",
    "CODE_SERVICE_UNAVAILABLE",
    "DAILY_TRADE_FIELDS",
    "DATE_COLUMNS",
    "STOCK_BASIC_FIELDS",
    "TushareClient",
    "TushareHttpClient",
    "TushareResponse",
]
