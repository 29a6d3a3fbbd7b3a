from __future__ import annotations

from pathlib import Path
import sys
from typing import Any, Callable

import pytest
import requests  # type: ignore[import-untyped]
from sqlalchemy.engine import Engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from btc_treasury.io.database import ensure_schema, get_engine  # noqa: E402


class DummyResponse:
    """Lightweight response stub for request mocking."""

    def __init__(
        self,
        json_payload: object | None = None,
        text_payload: str = "",
        status_code: int = 200,
    ) -> None:
        """Create a dummy response wrapper.

        Args:
            json_payload (object | None): Optional JSON payload.
            text_payload (str): Payload to return from text.
            status_code (int): HTTP status code.

        Returns:
            None
        """
        self._payload = json_payload
        self.text = text_payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        """Raise HTTPError for non-2xx status codes."""
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def json(self) -> object:
        """Return the payload for the dummy response."""
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


@pytest.fixture
def engine(tmp_path: Path) -> Engine:
    """Return a SQLite engine with the schema applied."""
    db_engine = get_engine(str(tmp_path / "treasury.db"))
    ensure_schema(db_engine)
    return db_engine


@pytest.fixture
def fake_requests(monkeypatch: pytest.MonkeyPatch) -> Callable[[Callable[[str], object]], list[dict[str, Any]]]:
    """Route ``requests.get`` to a URL-based handler and capture each call.

    The handler receives the URL and returns a DummyResponse, or raises a
    ``requests`` exception to simulate transport failures.
    """

    def install(handler: Callable[[str], object]) -> list[dict[str, Any]]:
        calls: list[dict[str, Any]] = []

        def fake_get(url: str, **kwargs: Any) -> object:
            calls.append({"url": url, **kwargs})
            return handler(url)

        monkeypatch.setattr(requests, "get", fake_get)
        return calls

    return install
