from __future__ import annotations

import textwrap

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", content: bytes = b""):
        self.status_code = status_code
        self.text = text
        self.content = content or text.encode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for requests.Session; serves canned responses by URL."""

    def __init__(self, responses: dict[str, FakeResponse] | None = None):
        self.responses = responses or {}
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, headers: dict | None = None, timeout: float | None = None) -> FakeResponse:
        self.calls.append((url, headers or {}))
        if url not in self.responses:
            raise requests.ConnectionError(f"no route to {url}")
        return self.responses[url]


WATER_IMG = "https://static.wikia.nocookie.net/little-alchemy/images/water.png"
FIRE_IMG = "https://static.wikia.nocookie.net/little-alchemy/images/fire.png"
STEAM_IMG = "https://static.wikia.nocookie.net/little-alchemy/images/steam.png"


def _icon(name: str, image: str | None = None) -> str:
    img = ""
    if image:
        img = f'<span typeof="mw:File"><img data-src="{image}?cb=20200101" src="data:image/gif;base64,R0lGOD"/></span>'
    return f'<span class="icon-hover">{img}<a href="/wiki/{name}" title="{name}">{name}</a></span>'


@pytest.fixture
def elements_page_html() -> str:
    return textwrap.dedent(
        f"""
        <html><body>
        <table class="navbox"><tr><td>nav</td></tr></table>
        <table class="list-table">
          <tr><th>Element</th><th>Recipes</th></tr>
          <tr><td>{_icon("Water", WATER_IMG)}</td><td>Available from the start.</td></tr>
          <tr><td>{_icon("Fire", FIRE_IMG)}</td><td>Available from the start.</td></tr>
          <tr>
            <td>{_icon("Steam", STEAM_IMG)}</td>
            <td><ul>
              <li>{_icon("Water")} + {_icon("Fire")}</li>
              <li>{_icon("Air")} + {_icon("Energy")}</li>
            </ul></td>
          </tr>
          <tr>
            <td>{_icon("Geyser")}</td>
            <td><ul>
              <li>Steam + Earth</li>
              <li><a href="/wiki/Steam" title="Steam">Steam</a></li>
            </ul></td>
          </tr>
          <tr><td>only one cell</td></tr>
        </table>
        </body></html>
        """
    )


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
