"""HTTP client for the remote MOVES emissions data API.

The client performs a single GET per call, bounded by a timeout, and never
retries. Failures come back as a :class:`QueryFailure` value instead of an
exception so that sweeps over many geographies can filter them out.
"""

from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Union

import pandas as pd
import requests

from .config import api_settings
from .errors import ApiError, MovesLiteError, NetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryFailure:
    """A failed query. Falsy, so ``if not result`` filters failures."""

    error: MovesLiteError
    params: dict = field(default_factory=dict)

    @property
    def stage(self) -> str:
        return self.error.stage

    @property
    def message(self) -> str:
        return str(self.error)

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"QueryFailure({type(self.error).__name__}: {self.error})"


def is_failure(result) -> bool:
    """True if ``result`` is a :class:`QueryFailure`."""
    return isinstance(result, QueryFailure)


@dataclass
class ApiClient:
    """Client for the emissions data API.

    Attributes:
        base_url: API root, without trailing slash
        timeout_sec: HTTP request timeout in seconds
        status_path: health-check endpoint
        data_path: data-retrieval endpoint
        session: optional ``requests.Session`` (or compatible object)
    """

    base_url: str
    timeout_sec: float = 10.0
    status_path: str = "/test"
    data_path: str = "/retrieve_data"
    session: Optional[requests.Session] = None

    @classmethod
    def from_env(cls, session: Optional[requests.Session] = None) -> "ApiClient":
        """Build a client from ``MOVESLITE_*`` environment settings."""
        settings = api_settings()
        return cls(
            base_url=settings.base_url,
            timeout_sec=settings.timeout_sec,
            status_path=settings.status_path,
            data_path=settings.data_path,
            session=session,
        )

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def check_status(self) -> Union[dict, QueryFailure]:
        """Query the health endpoint and return the decoded status payload."""
        resp = self._get(self.status_path, params={}, stage="status")
        if isinstance(resp, QueryFailure):
            return resp
        try:
            return resp.json()
        except ValueError:
            return {"status": resp.text.strip()}

    def retrieve(self, params: dict) -> Union[pd.DataFrame, QueryFailure]:
        """Fetch emissions rows for the given query parameters.

        A 2xx response whose body cannot be parsed is reported like an
        HTTP error: a :class:`QueryFailure` wrapping an :class:`ApiError`.
        """
        url = self.url(self.data_path)
        logger.info(f"Retrieving emissions data from {url} with {params}")
        resp = self._get(self.data_path, params=params, stage="query")
        if isinstance(resp, QueryFailure):
            return resp
        try:
            df = parse_payload(resp.text, resp.headers.get("Content-Type", ""))
        except (ValueError, TypeError, pd.errors.ParserError) as exc:
            logger.warning(f"Malformed payload from {url}: {exc}")
            err = ApiError(
                "API returned a malformed payload",
                status_code=resp.status_code,
                server_message=str(exc),
                stage="query",
                value=url,
            )
            return QueryFailure(err, dict(params))
        logger.info(f"Retrieved {len(df)} rows ({len(df.columns)} columns)")
        return df

    def _get(self, path: str, params: dict, stage: str):
        url = self.url(path)
        http = self.session if self.session is not None else requests
        try:
            resp = http.get(url, params=params, timeout=self.timeout_sec)
        except requests.exceptions.Timeout as exc:
            logger.warning(f"Request to {url} timed out after {self.timeout_sec}s")
            err = NetworkError(
                f"Request timed out after {self.timeout_sec}s: {exc}", stage=stage, value=url
            )
            return QueryFailure(err, dict(params))
        except requests.exceptions.RequestException as exc:
            logger.warning(f"Request to {url} failed: {exc}")
            err = NetworkError(f"API unreachable: {exc}", stage=stage, value=url)
            return QueryFailure(err, dict(params))

        if not 200 <= resp.status_code < 300:
            server_message = _server_message(resp)
            logger.warning(f"API returned HTTP {resp.status_code} for {url}: {server_message}")
            err = ApiError(
                "API request failed",
                status_code=resp.status_code,
                server_message=server_message,
                stage=stage,
                value=url,
            )
            return QueryFailure(err, dict(params))
        return resp


def _server_message(resp) -> str:
    """Best-effort extraction of an error message from a response body."""
    text = (resp.text or "").strip()
    try:
        body = json.loads(text)
    except ValueError:
        return text[:500]
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, list) and body and isinstance(body[0], str):
        return body[0]
    return text[:500]


def parse_payload(text: str, content_type: str = "") -> pd.DataFrame:
    """Parse a JSON or delimited payload into a DataFrame.

    JSON may be a list of records or an object holding a ``data`` list.
    Anything that does not decode as JSON is read as CSV.
    """
    text = text or ""
    is_json = "json" in content_type.lower() or text.lstrip()[:1] in ("[", "{")
    if is_json:
        body = json.loads(text)
        if isinstance(body, dict):
            body = body.get("data", [])
        return pd.DataFrame.from_records(body)
    if not text.strip():
        return pd.DataFrame()
    return pd.read_csv(io.StringIO(text))


__all__ = ["ApiClient", "QueryFailure", "is_failure", "parse_payload"]
