"""Test helpers for wordsync tests.

Provides entry builders, a manual timer for the debounce scheduler, and a
requests-style session that routes sync calls into a Flask test client.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from flask.testing import FlaskClient

from wordsync.core.models import Entry

TEST_SERVER_URL = "http://wordsync.test"
TEST_TOKEN = "test-token"

# (config_dir, *argv) -> (exit_code, stdout, stderr)
CliRunner = Callable[..., Tuple[int, str, str]]


def make_entry(entry_id: str, german: str = "Haus", english: str = "house", **fields: Any) -> Entry:
    """Build an entry with sensible defaults."""
    values: Dict[str, Any] = {"part_of_speech": "noun", "article": "das"}
    values.update(fields)
    return Entry(id=entry_id, german=german, english=english, **values)


def entry_payload(entry_id: str, updated_at: Optional[str], **fields: Any) -> Dict[str, Any]:
    """Build an entry in wire format."""
    payload = make_entry(entry_id, **fields).to_dict()
    payload["updatedAt"] = updated_at
    return payload


class ManualTimer:
    """Timer that only fires when the test says so."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class ManualTimerFactory:
    """Timer factory recording every timer it creates."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[ManualTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]


class FlaskResponse:
    """The slice of requests.Response the sync client reads."""

    def __init__(self, response: Any) -> None:
        self._response = response
        self.status_code = response.status_code

    def json(self) -> Any:
        data = self._response.get_json(silent=True)
        if data is None:
            raise ValueError("Response body is not JSON")
        return data


class FlaskSession:
    """requests-style session that posts into a Flask test client.

    Attributes:
        calls: Request bodies in the order they were sent
        before_post: Optional hook run before each request is forwarded
    """

    def __init__(self, test_client: FlaskClient) -> None:
        self.test_client = test_client
        self.calls: List[Dict[str, Any]] = []
        self.before_post: Optional[Callable[[], None]] = None

    def post(
        self,
        url: str,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> FlaskResponse:
        self.calls.append(json)
        if self.before_post is not None:
            self.before_post()
        response = self.test_client.post(urlsplit(url).path, json=json, headers=headers or {})
        return FlaskResponse(response)
