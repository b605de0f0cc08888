import re

import pytest
from selenium.common.exceptions import WebDriverException

from src.portal.navigation import (
    AuthenticationError,
    _apply_cookies,
    _sanitize_filename_component,
    _take_error_screenshot,
    click_and_wait,
    click_element,
    ensure_logged_in,
    launch_and_login,
    page_contains,
    wait_for_transition,
)
from src.portal.session import SessionStore
from tests.conftest import FakeBrowser, GRID_URL, LOGIN_URL, PORTAL

GRID_PAGE = "<html><body><h1>Minhas disciplinas</h1><button id='go' data-href='{href}'>Abrir</button></body></html>"


class DetachingBrowser(FakeBrowser):
    """Fails the next ``url_failures`` URL reads, like a frame being swapped out."""

    def __init__(self, *args, **kwargs):
        self.url_failures = 0
        self._url = ""
        super().__init__(*args, **kwargs)

    @property
    def current_url(self):
        if self.url_failures:
            self.url_failures -= 1
            raise WebDriverException("target frame detached")
        return self._url

    @current_url.setter
    def current_url(self, value):
        self._url = value


def test_sanitize_filename_component_strips_invalid_characters():
    raw = "open_course_*_self::p or self::div / Cálculo"
    sanitized = _sanitize_filename_component(raw)
    assert re.fullmatch(r"[\w.-]+", sanitized)
    assert ":" not in sanitized
    assert "*" not in sanitized


def test_sanitize_filename_component_handles_empty_input():
    assert _sanitize_filename_component("") == "artifact"
    assert _sanitize_filename_component("::") == "artifact"


def test_take_error_screenshot_uses_configured_dir(settings, browser):
    path = _take_error_screenshot(browser, settings, "login failure")
    assert path.startswith(settings.screenshot_dir)
    assert "login_failure_" in path
    assert browser.screenshots == [path]


class TestClickElement:
    def test_native_click(self, browser):
        browser.pages[GRID_URL] = GRID_PAGE.format(href="")
        browser.get(GRID_URL)
        assert click_element(browser, browser.find_element("css selector", "#go"))
        assert browser.clicks == ["go"]
        assert "arguments[0].click();" not in browser.scripts

    def test_intercepted_click_falls_back_to_script(self, browser):
        browser.pages[GRID_URL] = "<html><body><button id='go' data-intercept='1'>Abrir</button></body></html>"
        browser.get(GRID_URL)
        assert click_element(browser, browser.find_element("css selector", "#go"))
        assert browser.clicks == ["go"]
        assert "arguments[0].click();" in browser.scripts

    def test_stale_element_reports_failure(self, browser):
        browser.pages[GRID_URL] = "<html><body><button id='go' data-stale='1'>Abrir</button></body></html>"
        browser.get(GRID_URL)
        assert not click_element(browser, browser.find_element("css selector", "#go"))
        assert browser.clicks == []


class TestWaitForTransition:
    """Navigation is confirmed by URL change or by the grid markers going away."""

    def test_url_change_confirms(self, clock):
        browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href="")})
        browser.get(GRID_URL)
        browser.current_url = PORTAL + "/curso/1"
        assert wait_for_transition(browser, GRID_URL, timeout=5, interval=0.25)
        assert clock.now == 0

    def test_markers_vanishing_confirms_spa_navigation(self, clock):
        browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href="")})
        browser.get(GRID_URL)

        def swap_content(c):
            if c.now >= 1:
                browser.node("h1").text = "Aula 1"

        clock.hooks.append(swap_content)
        assert wait_for_transition(browser, GRID_URL, timeout=5, interval=0.25)
        assert 1 <= clock.now < 1.25

    def test_times_out_on_the_monotonic_clock(self, clock):
        browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href="")})
        browser.get(GRID_URL)
        assert not wait_for_transition(browser, GRID_URL, timeout=2, interval=0.25)
        # one last check after the deadline, then TimeoutException
        assert 2 < clock.now <= 2.25

    def test_url_only_mode_ignores_page_text(self, clock):
        browser = FakeBrowser({GRID_URL: "<html><body><p>Resultado</p></body></html>"})
        browser.get(GRID_URL)
        assert not wait_for_transition(browser, GRID_URL, timeout=1, interval=0.25, markers=())

    def test_unreadable_url_is_not_a_navigation(self, clock):
        browser = DetachingBrowser({GRID_URL: GRID_PAGE.format(href="")})
        browser.get(GRID_URL)
        browser.url_failures = 1
        assert not wait_for_transition(browser, GRID_URL, timeout=2, interval=0.25)
        assert browser.url_failures == 0


def test_click_and_wait_confirms_navigation(settings, clock):
    target = PORTAL + "/curso/1"
    browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href=target)})
    browser.get(GRID_URL)
    assert click_and_wait(browser, browser.find_element("css selector", "#go"), settings)
    assert browser.current_url == target


def test_click_and_wait_reports_click_without_navigation(settings, clock):
    browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href="")})
    browser.get(GRID_URL)
    assert not click_and_wait(browser, browser.find_element("css selector", "#go"), settings)
    assert clock.now >= settings.navigation_timeout


def test_click_and_wait_with_unreadable_url_needs_page_evidence(settings, clock):
    browser = DetachingBrowser({GRID_URL: GRID_PAGE.format(href="")})
    browser.get(GRID_URL)
    browser.url_failures = 1
    assert not click_and_wait(browser, browser.find_element("css selector", "#go"), settings)
    assert browser.clicks == ["go"]


def test_page_contains_is_accent_insensitive_and_rejects_blank_text(browser):
    browser.pages[GRID_URL] = "<html><body><p>Cálculo   Numérico</p></body></html>"
    browser.get(GRID_URL)
    assert page_contains(browser, "calculo numerico")
    assert not page_contains(browser, "")
    assert not page_contains(browser, "   ")


class TestSessionLogin:
    def test_apply_cookies_converts_expiry_fields(self, settings, browser):
        applied = _apply_cookies(
            browser,
            settings,
            [
                {"name": "sid", "value": "abc", "expires": 1893456000.5},
                {"name": "pref", "value": "1", "expiry": 1893456000.0},
                {"name": "", "value": "skip"},
            ],
        )
        assert applied == 2
        assert browser.visited == [LOGIN_URL]
        assert browser.cookies[0] == {"name": "sid", "value": "abc", "expiry": 1893456000}
        assert browser.cookies[1]["expiry"] == 1893456000

    def test_valid_session_skips_login(self, settings, tmp_path):
        store = SessionStore(str(tmp_path / "cookies.json"))
        store.persist_session([{"name": "sid", "value": "abc"}])
        browser = FakeBrowser({GRID_URL: GRID_PAGE.format(href="")})

        ensure_logged_in(browser, settings, store)

        assert browser.current_url == GRID_URL
        assert browser.cookies == [{"name": "sid", "value": "abc"}]
        assert browser.typed == {}

    def test_expired_session_without_credentials_fails(self, settings, tmp_path):
        store = SessionStore(str(tmp_path / "cookies.json"))
        browser = FakeBrowser(redirects={GRID_URL: LOGIN_URL})

        with pytest.raises(AuthenticationError):
            ensure_logged_in(browser, settings, store)

    def test_launch_and_login_always_quits(self, settings, tmp_path):
        store = SessionStore(str(tmp_path / "cookies.json"))
        browser = FakeBrowser(redirects={GRID_URL: LOGIN_URL})

        with pytest.raises(AuthenticationError):
            with launch_and_login(settings, store, lambda s: browser):
                pass
        assert browser.quit_calls == 1
