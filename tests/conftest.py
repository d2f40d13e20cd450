import calendar
from concurrent.futures import Executor, Future
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import fitz
import pytest
import requests

from prayer_clock.core.db import init_db, shutdown_db


@pytest.fixture
def db(tmp_path):
    # Temporary SQLite file so tests are isolated
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    shutdown_db()


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", content: bytes = b"", json_data: Any = None):
        self.status_code = status_code
        self.text = text
        self.content = content or text.encode()
        self._json = json_data

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


Route = Union[FakeResponse, Exception, Callable[..., FakeResponse]]


class FakeSession:
    """Stands in for requests.Session; routes by URL and records every call."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def _handle(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(status_code=404)
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(url, **kwargs)
        return route

    def get(self, url: str, **kwargs) -> FakeResponse:
        return self._handle("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> FakeResponse:
        return self._handle("POST", url, **kwargs)

    def close(self) -> None:
        pass

    def urls(self) -> List[str]:
        return [url for _, url, _ in self.calls]


def document_text(year: int = 2025, month: int = 3, days: Optional[int] = None, zone: int = 1) -> str:
    """Text shaped like an extracted ACJU monthly PDF."""
    days = days or calendar.monthrange(year, month)[1]
    abbr = calendar.month_abbr[month]
    lines = [
        "ACJU Prayer Times",
        f"Zone: {zone}",
        "COLOMBO DISTRICT, GAMPAHA DISTRICT, KALUTARA DISTRICT - ",
        f"{calendar.month_name[month].upper()} {year}",
        "Date Fajr Sunrise Luhar Asr Maghrib Isha",
    ]
    for day in range(1, days + 1):
        minute = day % 50 + 5
        lines.append(
            f"{day:02d}-{abbr} 4:{minute:02d} AM 6:{minute:02d} AM 12:{minute:02d} PM "
            f"3:{minute:02d} PM 6:{minute:02d} PM 7:{minute:02d} PM"
        )
    return "\n".join(lines)


def make_pdf(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    y = 40
    for line in text.splitlines():
        if y > page.rect.height - 40:
            page = doc.new_page()
            y = 40
        page.insert_text((36, y), line, fontsize=8)
        y += 11
    data = doc.tobytes()
    doc.close()
    return data


def index_page(zone_links: Dict[str, List[str]]) -> str:
    """ACJU prayer times page with one accordion section per zone title."""
    sections = []
    for title, links in zone_links.items():
        anchors = "".join(f'<p><a href="{href}">{href}</a></p>' for href in links)
        sections.append(
            "<details class=\"e-n-accordion-item\"><summary>"
            f"<div class=\"e-n-accordion-item-title-text\">  {title} </div>"
            f"</summary><div class=\"content\">{anchors}</div></details>"
        )
    return f"<html><body>{''.join(sections)}</body></html>"


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future
