from typing import Any, Callable, Dict, List, Optional

import pytest
from lxml import html
from lxml.cssselect import CSSSelector
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    NoSuchElementException,
    StaleElementReferenceException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.support import wait as selenium_wait

from src.portal.cards import TITLE_SCAN_SCRIPT
from src.portal.config import AgentSettings, load_settings
from src.portal.matching import normalize_text
from src.portal.utils import Pacer

PORTAL = "https://portal.test"
GRID_URL = PORTAL + "/disciplinas"
LOGIN_URL = PORTAL + "/login"

_BLANK_PAGE = "<html><body></body></html>"


def _select(node, by: str, selector: str, include_self: bool):
    if by == By.XPATH:
        found = node.xpath(selector)
    elif by == By.TAG_NAME:
        found = list(node.iter(selector))
    elif by == By.CSS_SELECTOR:
        found = CSSSelector(selector, translator="html")(node)
    else:
        raise NotImplementedError(by)
    found = [n for n in found if hasattr(n, "tag") and isinstance(n.tag, str)]
    if not include_self and by != By.XPATH:
        found = [n for n in found if n is not node]
    return found


class FakeElement:
    """Selenium WebElement stand-in backed by an lxml node.

    Geometry comes from ``data-x``/``data-y``/``data-w``/``data-h`` (default
    100x20 at the origin). ``data-href`` makes a click navigate,
    ``data-stale`` makes the handle raise and ``data-intercept`` makes the
    native click refuse so the JS fallback kicks in.
    """

    def __init__(self, node, browser: "FakeBrowser"):
        self._node = node
        self._browser = browser

    def __eq__(self, other):
        return isinstance(other, FakeElement) and other._node is self._node

    def __hash__(self):
        return id(self._node)

    def __repr__(self):
        return f"<FakeElement {self._node.tag} {self.label!r}>"

    def _check_stale(self):
        if self._node.get("data-stale") is not None:
            raise StaleElementReferenceException("stale element reference")

    @property
    def label(self) -> str:
        return self._node.get("id") or " ".join(self._node.text_content().split()) or self._node.tag

    @property
    def text(self) -> str:
        self._check_stale()
        return " ".join(self._node.text_content().split())

    @property
    def tag_name(self) -> str:
        self._check_stale()
        return self._node.tag

    @property
    def rect(self) -> Dict[str, float]:
        self._check_stale()
        return {
            "x": float(self._node.get("data-x", 0)),
            "y": float(self._node.get("data-y", 0)),
            "width": float(self._node.get("data-w", 100)),
            "height": float(self._node.get("data-h", 20)),
        }

    def get_attribute(self, name: str) -> Optional[str]:
        self._check_stale()
        return self._node.get(name)

    def is_displayed(self) -> bool:
        return True

    def is_enabled(self) -> bool:
        return True

    def clear(self) -> None:
        self._browser.typed.pop(self.label, None)

    def send_keys(self, text: str) -> None:
        self._browser.typed[self.label] = text

    def click(self) -> None:
        self._check_stale()
        if self._node.get("data-intercept") is not None:
            raise ElementClickInterceptedException("element click intercepted")
        self._browser.on_click(self)

    def find_elements(self, by: str, selector: str) -> List["FakeElement"]:
        self._check_stale()
        return [FakeElement(n, self._browser) for n in _select(self._node, by, selector, include_self=False)]

    def find_element(self, by: str, selector: str) -> "FakeElement":
        found = self.find_elements(by, selector)
        if not found:
            raise NoSuchElementException(f"no element for {selector}")
        return found[0]


class FakeBrowser:
    """A tiny multi-page browser: URL -> HTML, clicks on ``data-href`` navigate."""

    def __init__(self, pages: Optional[Dict[str, str]] = None, redirects: Optional[Dict[str, str]] = None):
        self.pages: Dict[str, str] = dict(pages or {})
        self.redirects: Dict[str, str] = dict(redirects or {})
        self.current_url: str = ""
        self.root = html.document_fromstring(_BLANK_PAGE)
        self.visited: List[str] = []
        self.clicks: List[str] = []
        self.scripts: List[str] = []
        self.script_hooks: List[Callable[["FakeBrowser", str], None]] = []
        self.cookies: List[Dict[str, Any]] = []
        self.typed: Dict[str, str] = {}
        self.screenshots: List[str] = []
        self.quit_calls = 0

    # --- Test helpers ---
    def node(self, css: str):
        return CSSSelector(css, translator="html")(self.root)[0]

    def navigate(self, url: str) -> None:
        url = self.redirects.get(url, url)
        self.current_url = url
        self.visited.append(url)
        self.root = html.document_fromstring(self.pages.get(url, _BLANK_PAGE))

    def on_click(self, element: FakeElement) -> None:
        self.clicks.append(element.label)
        href = element._node.get("data-href")
        if href:
            self.navigate(href)

    # --- WebDriver surface ---
    def get(self, url: str) -> None:
        self.navigate(url)

    def find_elements(self, by: str, selector: str) -> List[FakeElement]:
        return [FakeElement(n, self) for n in _select(self.root, by, selector, include_self=True)]

    def find_element(self, by: str, selector: str) -> FakeElement:
        found = self.find_elements(by, selector)
        if not found:
            raise NoSuchElementException(f"no element for {selector}")
        return found[0]

    def execute_script(self, script: str, *args: Any) -> Any:
        self.scripts.append(script)
        for hook in list(self.script_hooks):
            hook(self, script)
        if script == "arguments[0].click();" and args:
            self.on_click(args[0])
        if script == TITLE_SCAN_SCRIPT and args:
            return [FakeElement(n, self) for n in self._scan_title(args[0])]
        return None

    def _scan_title(self, needle: str) -> list:
        """What the in-page title scan returns: innermost rendered matches."""
        hits = []
        for node in self.root.body.iterdescendants():
            if not isinstance(node.tag, str) or node.tag in ("script", "style"):
                continue
            if needle not in normalize_text(node.text_content()):
                continue
            if float(node.get("data-w", 100)) == 0 and float(node.get("data-h", 20)) == 0:
                continue
            hits.append(node)
        return [n for n in hits if not any(n in other.iterancestors() for other in hits)]

    def add_cookie(self, cookie: Dict[str, Any]) -> None:
        self.cookies.append(cookie)

    def get_cookies(self) -> List[Dict[str, Any]]:
        return list(self.cookies)

    def save_screenshot(self, path: str) -> bool:
        self.screenshots.append(path)
        return True

    def quit(self) -> None:
        self.quit_calls += 1


class FakeClock(Pacer):
    """Virtual clock: sleeping advances time instantly and runs the hooks.

    Also stands in for the ``time`` module of ``WebDriverWait`` so page
    condition waits are measured on the same clock.
    """

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []
        self.hooks: List[Callable[["FakeClock"], None]] = []

    def sleep(self, seconds: float) -> None:
        self.now += seconds
        self.sleeps.append(seconds)
        for hook in list(self.hooks):
            hook(self)

    def monotonic(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def clean_agent_env(monkeypatch):
    """Keep deployment variables of the developer machine out of the settings."""
    for field in AgentSettings.model_fields.values():
        alias = field.validation_alias
        for name in getattr(alias, "choices", ()):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def make_settings(tmp_path) -> Callable[..., AgentSettings]:
    def _make(**overrides) -> AgentSettings:
        values = dict(
            course_url=GRID_URL,
            login_url=LOGIN_URL,
            auth_state_file=str(tmp_path / "cookies.json"),
            screenshot_dir=str(tmp_path / "screenshots"),
            watch_minutes=1,
            navigation_timeout=2,
            submit_confirm_timeout=2,
            completion_poll_attempts=3,
            title_scroll_steps=2,
        )
        values.update(overrides)
        return load_settings(_env_file=None, **values)

    return _make


@pytest.fixture()
def settings(make_settings) -> AgentSettings:
    return make_settings()


@pytest.fixture(autouse=True)
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(selenium_wait, "time", fake)
    return fake


@pytest.fixture()
def browser() -> FakeBrowser:
    return FakeBrowser()


# --- Portal site builder ---

def lesson_url(slug: str) -> str:
    return f"{PORTAL}/curso/{slug}"


def lesson_pages(
    slug: str,
    *,
    completion_label: str = "Marcar como estudado",
    quiz: bool = True,
    submit: bool = True,
    back: bool = False,
) -> Dict[str, str]:
    """Lesson, activity and confirmation pages of one course."""
    lesson = lesson_url(slug)
    quiz_url = lesson + "/atividade"
    done_url = lesson + "/enviada"
    quiz_link = f"<a id='quiz-{slug}' data-href='{quiz_url}'>Atividade</a>" if quiz else ""
    submit_button = f"<button id='submit-{slug}' data-href='{done_url}'>Enviar</button>" if submit else ""
    back_link = f"<a id='back-{slug}' data-href='{lesson}'>Voltar</a>" if back else ""
    return {
        lesson: (
            "<html><body><h2>Aula 1</h2>"
            f"<button id='advance-{slug}'>Acessar conteúdo</button>"
            "<video></video>"
            f"<button id='complete-{slug}'>{completion_label}</button>"
            f"{quiz_link}</body></html>"
        ),
        quiz_url: (
            "<html><body>"
            "<div class='question'><p>Qual é a capital do Brasil?</p>"
            f"<label id='right-{slug}'>Brasília, capital federal</label>"
            f"<label id='wrong-{slug}'>Lisboa</label></div>"
            f"{submit_button}</body></html>"
        ),
        done_url: f"<html><body><p>Atividade enviada</p>{back_link}</body></html>",
    }


def grid_page(titles: List[str], *, with_markers: bool = True) -> str:
    """Dashboard grid: one tile per title with a round open arrow."""
    tiles = []
    for i, title in enumerate(titles):
        slug = f"c{i + 1}"
        marker = "<span>Digital (EAD)</span>" if with_markers else ""
        tiles.append(
            f"<section data-x='{i * 400}' data-y='100' data-w='320' data-h='200'>"
            f"<h3>{title}</h3>{marker}<button>Detalhes</button>"
            f"<button id='open-{slug}' data-x='{i * 400 + 260}' data-y='250' data-w='44' data-h='44' "
            f"data-href='{lesson_url(slug)}'><svg></svg></button></section>"
        )
    return "<html><body><h1>Minhas disciplinas</h1><div class='grid'>" + "".join(tiles) + "</div></body></html>"


def build_portal(titles: List[str], *, with_markers: bool = True, **lesson_options) -> FakeBrowser:
    pages = {GRID_URL: grid_page(titles, with_markers=with_markers)}
    for i in range(len(titles)):
        pages.update(lesson_pages(f"c{i + 1}", **lesson_options))
    return FakeBrowser(pages)
