"""
Shared fixtures: an in-memory stand-in for requests.Session so no test
touches the network.
"""

from __future__ import annotations

import io
import logging
import threading

import pytest
import requests


class FakeResponse:
    """Streams pre-baked lines; optionally breaks after ``fail_after`` lines."""

    def __init__(self, lines=(), status_code: int = 200, fail_after: int | None = None) -> None:
        self.lines = list(lines)
        self.status_code = status_code
        self.fail_after = fail_after
        self.closed = False

    def iter_lines(self):
        for i, line in enumerate(self.lines):
            if self.fail_after is not None and i == self.fail_after:
                raise requests.exceptions.ChunkedEncodingError("connection broken")
            yield line.encode("utf-8")

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FakeSession:
    """
    Replays scripted outcomes per URL. Each outcome is either a FakeResponse
    or an exception instance to raise; unscripted calls get an empty body.
    """

    def __init__(self, outcomes: dict | None = None) -> None:
        self._outcomes = {url: list(items) for url, items in (outcomes or {}).items()}
        self._lock = threading.Lock()
        self.calls: list[str] = []
        self.kwargs: list[dict] = []

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append(url)
            self.kwargs.append(kwargs)
            pending = self._outcomes.get(url)
            outcome = pending.pop(0) if pending else FakeResponse()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class TTYStream(io.StringIO):
    def isatty(self) -> bool:
        return True


@pytest.fixture()
def tty_stdin(monkeypatch) -> TTYStream:
    stream = TTYStream("")
    monkeypatch.setattr("sys.stdin", stream)
    return stream


@pytest.fixture()
def no_sleep():
    """Records requested sleeps instead of sleeping."""
    calls: list[float] = []
    lock = threading.Lock()

    def _sleep(seconds: float) -> None:
        with lock:
            calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    logging.disable(logging.NOTSET)
    logging.getLogger().setLevel(logging.INFO)
