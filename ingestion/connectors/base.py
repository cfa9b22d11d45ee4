"""Adapter abstraction, errors, and helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from ingestion.models.domain import NormalizedEvent, SourceDTO
from ingestion.settings import Settings, get_settings
from ingestion.utils.dates import iso_utc, utcnow
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

RawItem = Dict[str, Any]
Clock = Callable[[], datetime]

# Shapes a parser trips over when upstream changes its payload layout.
MALFORMED_PAYLOAD_ERRORS = (TypeError, KeyError, ValueError, AttributeError, IndexError)


class ConnectorError(Exception):
    """Base adapter error."""


class FetchError(ConnectorError):
    """Upstream could not be reached or answered with a non-2xx status."""


class ParseError(ConnectorError):
    """Upstream answered, but the payload could not be understood."""


class FixtureSource(Protocol):
    enabled: bool

    def load(self, name: str) -> Any: ...


class BaseAdapter(ABC):
    """Fetches raw items for one source and turns each into a NormalizedEvent.

    `fetch` performs a single GET (no inline retries). When it fails and the
    fixture fallback is enabled, adapters that declare `fixture_name` parse the
    bundled payload instead. Every returned item is tagged with `_origin`
    (`live` or `fixture`) and `_fetched_at`.
    """

    kind: str = "base"
    accept: str = "application/json"
    fixture_name: Optional[str] = None

    def __init__(
        self,
        source: SourceDTO,
        settings: Optional[Settings] = None,
        *,
        fixtures: Optional[FixtureSource] = None,
        clock: Clock = utcnow,
    ):
        self.source = source
        self._settings = settings or get_settings()
        self._fixtures = fixtures
        self._clock = clock

    @property
    def source_id(self) -> str:
        return self.source.id

    def fetch(self) -> List[RawItem]:
        try:
            response = self._get(self.source.url)
            items = self._parse(self.parse_response, response)
            origin = "live"
        except ConnectorError as exc:
            if not self._can_fall_back():
                raise
            logger.warning(
                "connector.fixture_fallback",
                extra={"source_id": self.source_id, "fixture": self.fixture_name, "error": str(exc)},
            )
            assert self._fixtures is not None and self.fixture_name is not None  # for mypy
            try:
                payload = self._fixtures.load(self.fixture_name)
            except (OSError, ValueError) as fixture_exc:
                raise ParseError(f"fixture {self.fixture_name} unavailable: {fixture_exc}") from fixture_exc
            items = self._parse(self.parse_fixture, payload)
            origin = "fixture"
        return self._tag(items, origin)

    def _parse(self, parser: Callable[[Any], List[RawItem]], payload: Any) -> List[RawItem]:
        """Run `parser`, reporting a malformed payload as ParseError."""
        try:
            return parser(payload)
        except ConnectorError:
            raise
        except MALFORMED_PAYLOAD_ERRORS as exc:
            raise ParseError(f"malformed payload from {self.source.url}: {type(exc).__name__}: {exc}") from exc

    @abstractmethod
    def parse_response(self, response: httpx.Response) -> List[RawItem]:
        """Turn a successful upstream response into raw items."""

    def parse_fixture(self, payload: Any) -> List[RawItem]:
        raise ParseError(f"{type(self).__name__} has no fixture format")

    @abstractmethod
    def normalize(self, raw: RawItem) -> NormalizedEvent:
        """Map one raw item to the canonical event."""

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": self._settings.http_user_agent, "Accept": self.accept}

    def _get(self, url: str) -> httpx.Response:
        try:
            response = httpx.get(
                url,
                headers=self._headers(),
                timeout=float(self._settings.http_timeout_seconds),
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise FetchError(f"timeout fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"transport error fetching {url}: {exc}") from exc
        if not response.is_success:
            raise FetchError(f"HTTP {response.status_code} from {url}")
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"invalid JSON from {self.source.url}") from exc

    def _can_fall_back(self) -> bool:
        return self.fixture_name is not None and self._fixtures is not None and self._fixtures.enabled

    def _tag(self, items: List[RawItem], origin: str) -> List[RawItem]:
        fetched_at = iso_utc(self._clock())
        return [{**item, "_origin": origin, "_fetched_at": fetched_at} for item in items]


def normalize_district(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return "_".join(str(value).lower().split())


def format_number(value: Any) -> str:
    """Render 5.0 as '5' and 5.25 as '5.25'."""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)
