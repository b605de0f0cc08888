"""
Core Selenium navigation logic for the portal agent.
Handles driver initialization, login, session management and SPA-aware
navigation confirmation.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import signal
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from selenium import webdriver
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    ElementNotInteractableException,
    InvalidElementStateException,
    NoSuchElementException,
    StaleElementReferenceException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from selenium.webdriver.support.ui import WebDriverWait

from . import config
from .config import AgentSettings
from .matching import normalize_text, text_matches
from .session import SessionStore
from .utils import resilient_find_element, try_find


class AuthenticationError(RuntimeError):
    """No usable session could be established; the run cannot proceed."""


# --- Driver Management ---

def _resolve_chrome_binary() -> str | None:
    """Attempt to resolve a Chrome/Chromium binary path from env or PATH.

    Checks common env vars and executable names used across providers
    (e.g., Render, Heroku, Debian/Ubuntu).
    """
    candidate_env_vars = [
        "CHROME_BINARY",
        "GOOGLE_CHROME_SHIM",
        "CHROME_PATH",
        "CHROMIUM_PATH",
    ]
    for env_name in candidate_env_vars:
        binary_path = os.getenv(env_name)
        if binary_path and os.path.exists(binary_path):
            return binary_path

    for exe in ("google-chrome", "chrome", "chromium", "chromium-browser"):
        resolved = shutil.which(exe)
        if resolved:
            return resolved
    return None


def _ensure_tmp_dirs() -> dict[str, str]:
    """Ensure Chrome temp directories exist and return their paths."""
    base = Path("/tmp/portal_agent_chrome")
    user_data = base / "user_data"
    cache_dir = base / "cache"
    for p in (user_data, cache_dir):
        p.mkdir(parents=True, exist_ok=True)
    return {
        "user_data_dir": str(user_data),
        "disk_cache_dir": str(cache_dir),
    }


def _get_chrome_options(settings: AgentSettings, *, force_legacy_headless: bool = False) -> webdriver.ChromeOptions:
    """Configures Chrome options from settings.

    force_legacy_headless: when True, use the legacy "--headless" flag instead of
    the modern "--headless=new" for older Chrome builds.
    """
    options = webdriver.ChromeOptions()

    if settings.headless:
        options.add_argument("--headless" if force_legacy_headless else "--headless=new")

    # Core stability flags for Linux containers
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-setuid-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-first-run")
    options.add_argument("--no-zygote")
    options.add_argument("--window-size=1366,900")
    # Lessons autoplay their video; a muted autoplay is never blocked
    options.add_argument("--autoplay-policy=no-user-gesture-required")
    options.add_argument("--mute-audio")

    tmp_dirs = _ensure_tmp_dirs()
    options.add_argument(f"--user-data-dir={tmp_dirs['user_data_dir']}")
    options.add_argument(f"--disk-cache-dir={tmp_dirs['disk_cache_dir']}")

    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    options.add_experimental_option("useAutomationExtension", False)

    chrome_binary = _resolve_chrome_binary()
    if chrome_binary:
        options.binary_location = chrome_binary

    return options


def create_driver(settings: AgentSettings) -> webdriver.Chrome:
    """Initializes and returns a configured Chrome WebDriver with fallbacks.

    Strategy:
      1) Try modern headless mode with Selenium Manager.
      2) On failure, retry with legacy headless flag.
    """
    log_path = os.getenv("SELENIUM_LOG_PATH", str(Path.cwd() / "selenium_driver.log"))
    service = ChromeService(log_output=log_path)

    try:
        driver = webdriver.Chrome(service=service, options=_get_chrome_options(settings))
        driver.set_page_load_timeout(settings.page_load_timeout)
        logging.info("WebDriver initialized (headless=%s).", settings.headless)
        return driver
    except WebDriverException as first_error:
        logging.warning(
            "Primary WebDriver init failed. Retrying with legacy headless. Error: %s",
            first_error,
        )

    try:
        driver = webdriver.Chrome(
            service=service,
            options=_get_chrome_options(settings, force_legacy_headless=True),
        )
        driver.set_page_load_timeout(settings.page_load_timeout)
        logging.info("WebDriver initialized (legacy --headless).")
        return driver
    except WebDriverException as second_error:
        logging.critical(
            "Failed to initialize WebDriver after fallbacks. Chrome/Chromium may be missing or "
            "required OS libraries are not installed (libnss3, libgbm, libasound2). "
            "See %s for ChromeDriver logs. Error: %s",
            log_path,
            second_error,
        )
        raise


def _force_kill_driver_process(driver: webdriver.Chrome) -> None:
    """Best-effort termination of lingering Chrome/Chromedriver processes."""
    service = getattr(driver, "service", None)
    process = getattr(service, "process", None)
    pid = getattr(process, "pid", None)

    if not process:
        logging.debug("No WebDriver service process found to terminate.")
        return

    logging.warning("Attempting to forcefully terminate lingering WebDriver process (pid=%s).", pid)
    try:
        process.terminate()
        process.wait(timeout=3)
        logging.info("WebDriver process terminated after forced kill attempt.")
        return
    except Exception as terminate_err:
        logging.debug("process.terminate() failed: %s", terminate_err)

    if pid:
        sig = signal.SIGKILL if hasattr(signal, "SIGKILL") else signal.SIGTERM
        try:
            os.kill(pid, sig)
            logging.info("WebDriver OS-level kill signal dispatched for pid %s.", pid)
        except OSError as os_kill_err:
            logging.debug("OS-level kill attempt for pid %s failed: %s", pid, os_kill_err)


def _quit_driver(driver: Any, timeout_seconds: float = 5) -> None:
    quit_completed = threading.Event()

    def _on_quit_timeout():
        if quit_completed.is_set():
            return
        logging.warning(
            "WebDriver quit timed out after %s seconds; attempting forced termination.",
            timeout_seconds,
        )
        _force_kill_driver_process(driver)

    timer = threading.Timer(timeout_seconds, _on_quit_timeout)
    timer.daemon = True
    timer.start()
    try:
        driver.quit()
        logging.info("WebDriver quit successfully.")
    except Exception as e:
        # quit() may fail if the browser crashed; cleanup is best-effort
        logging.warning("WebDriver quit failed (browser may have crashed): %s", e)
        _force_kill_driver_process(driver)
    finally:
        quit_completed.set()
        timer.cancel()


# --- Screenshots ---

def _sanitize_filename_component(raw: str) -> str:
    cleaned = re.sub(r"[^\w.-]+", "_", raw or "").strip("._")
    return cleaned[:80] or "artifact"


def _take_error_screenshot(driver: Any, settings: AgentSettings, filename_prefix: str) -> Optional[str]:
    """Saves a screenshot to the configured directory with a timestamp."""
    try:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"{_sanitize_filename_component(filename_prefix)}_{timestamp}.png"
        os.makedirs(settings.screenshot_dir, exist_ok=True)
        filepath = os.path.join(settings.screenshot_dir, filename)
        driver.save_screenshot(filepath)
        logging.warning("Screenshot saved to %s", filepath)
        return filepath
    except Exception as e:
        # Avoid causing a new error during error logging
        logging.error("Failed to capture error screenshot: %s", e)
        return None


# --- Session and Login ---

def _on_login_page(driver: Any) -> bool:
    try:
        current_url = driver.current_url or ""
    except WebDriverException:
        return False
    return config.LOGIN_URL_MARKER in current_url.lower()


def _has_login_form(driver: Any) -> bool:
    return any(try_find(driver, value, by) is not None for by, value in config.USERNAME_SELECTORS)


def _apply_cookies(driver: Any, settings: AgentSettings, cookies: List[Dict[str, Any]]) -> int:
    # Cookies can only be set for the domain currently loaded
    driver.get(settings.login_url)
    applied = 0
    for cookie in cookies:
        if not (cookie.get("name") and cookie.get("value")):
            continue
        cookie = dict(cookie)
        if "expiry" in cookie and isinstance(cookie["expiry"], float):
            cookie["expiry"] = int(cookie["expiry"])
        # Puppeteer-style exports carry "expires" instead of "expiry"
        expires = cookie.pop("expires", None)
        if isinstance(expires, (int, float)) and expires > 0 and "expiry" not in cookie:
            cookie["expiry"] = int(expires)
        try:
            driver.add_cookie(cookie)
            applied += 1
        except WebDriverException as exc:
            logging.debug("Skipping cookie %s: %s", cookie.get("name"), exc)
    logging.info("Loaded %s cookies.", applied)
    return applied


def _wait_for_resilient_element(
    driver: Any,
    selectors: Sequence[Tuple[str, str]],
    name: str,
    *,
    timeout: float,
) -> WebElement:
    """Wait for an element via resilient selectors until it is displayed and enabled."""

    wait = WebDriverWait(
        driver,
        timeout,
        ignored_exceptions=(StaleElementReferenceException,),
    )

    def _locate(drv):
        try:
            element = resilient_find_element(drv, selectors, name)
        except NoSuchElementException:
            return False
        return element if element.is_displayed() and element.is_enabled() else False

    return wait.until(_locate)


def _resilient_type(
    driver: Any,
    selectors: Sequence[Tuple[str, str]],
    text: str,
    name: str,
    *,
    timeout: float,
) -> WebElement:
    """Type into an element resolved via resilient selectors with retry logic."""

    last_error: Optional[Exception] = None

    for attempt in range(1, 4):
        try:
            element = _wait_for_resilient_element(driver, selectors, name, timeout=timeout)
            try:
                element.click()
            except WebDriverException:
                pass
            element.clear()
            element.send_keys(text)
            logging.debug("Typed into %s on attempt %s", name, attempt)
            return element
        except TimeoutException:
            raise
        except (StaleElementReferenceException, ElementNotInteractableException, InvalidElementStateException) as err:
            last_error = err
            logging.debug("Retrying resilient type for %s due to %s (attempt %s)", name, err, attempt)

    raise TimeoutException(
        f"Unable to interact with {name} after multiple resilient selector attempts. Last error: {last_error}"
    ) from last_error


def _resilient_click(
    driver: Any,
    selectors: Sequence[Tuple[str, str]],
    name: str,
    *,
    timeout: float,
) -> WebElement:
    """Click an element resolved via resilient selectors."""
    element = _wait_for_resilient_element(driver, selectors, name, timeout=timeout)
    if not click_element(driver, element):
        raise TimeoutException(f"Unable to click {name}.")
    logging.info("Clicked %s using resilient selectors", name)
    return element


def perform_login(driver: Any, settings: AgentSettings) -> None:
    """Fills the login form with configured credentials, with retry logic."""
    if not settings.has_credentials:
        raise AuthenticationError("No valid session and no credentials configured.")

    max_login_attempts = 3
    for attempt in range(1, max_login_attempts + 1):
        try:
            logging.info("Attempting fresh login (Attempt %s/%s)...", attempt, max_login_attempts)
            driver.get(settings.login_url)

            _resilient_type(driver, config.USERNAME_SELECTORS, settings.username, "username field", timeout=15)
            _resilient_type(
                driver,
                config.PASSWORD_SELECTORS,
                settings.password.get_secret_value(),
                "password field",
                timeout=15,
            )
            _resilient_click(driver, config.LOGIN_BUTTON_SELECTORS, "login button", timeout=15)

            WebDriverWait(driver, settings.login_timeout).until(
                lambda d: not _on_login_page(d) and not _has_login_form(d)
            )
            logging.info("Login successful after %s attempt(s).", attempt)
            return
        except (TimeoutException, NoSuchElementException, StaleElementReferenceException) as e:
            logging.warning("Login attempt %s failed (Element/Timeout): %s. Retrying.", attempt, e)
            continue

    logging.error("Login failed after %s attempts.", max_login_attempts)
    _take_error_screenshot(driver, settings, "login_failure")
    raise AuthenticationError("Login form not found or credentials rejected.")


def ensure_logged_in(driver: Any, settings: AgentSettings, store: SessionStore) -> None:
    """Reuse the persisted session when valid, otherwise log in and persist cookies."""
    cookies = store.load_session()
    if cookies:
        _apply_cookies(driver, settings, cookies)

    driver.get(settings.course_url)
    if not _on_login_page(driver):
        logging.info("Session already authenticated.")
        return

    logging.info("Session invalid or expired. Attempting fresh login.")
    perform_login(driver, settings)
    store.persist_session(driver.get_cookies())


@contextmanager
def launch_and_login(
    settings: AgentSettings,
    store: SessionStore,
    driver_factory: Callable[[AgentSettings], Any] = create_driver,
) -> Iterator[Any]:
    """Context manager to initialize driver, restore the session and ensure login."""
    driver = driver_factory(settings)
    try:
        ensure_logged_in(driver, settings, store)
        yield driver
    finally:
        if driver is not None and hasattr(driver, "quit"):
            _quit_driver(driver)


# --- Page helpers ---

def goto_home(driver: Any, settings: AgentSettings) -> None:
    driver.get(settings.course_url)


def body_text(driver: Any) -> Optional[str]:
    try:
        return driver.find_element(By.TAG_NAME, "body").text or ""
    except WebDriverException:
        return None


def current_url(driver: Any) -> Optional[str]:
    """Current URL, or None when the driver could not report it."""
    try:
        return driver.current_url or ""
    except WebDriverException as exc:
        logging.debug("Unable to read current URL: %s", exc)
        return None


def run_script(driver: Any, script: str, *args: Any) -> Any:
    """Execute a script, treating driver errors as a no-op."""
    try:
        return driver.execute_script(script, *args)
    except WebDriverException as exc:
        logging.debug("Script failed (%s): %s", script[:40], exc)
        return None


def scroll_to_top(driver: Any) -> None:
    run_script(driver, "window.scrollTo(0, 0);")


def scroll_by_half_viewport(driver: Any) -> None:
    run_script(driver, "window.scrollBy(0, window.innerHeight / 2);")


def scroll_page(driver: Any, pixels: int) -> None:
    run_script(driver, "window.scrollBy(0, arguments[0]);", pixels)


def play_first_video(driver: Any) -> None:
    # Autoplay/DRM refusals are expected; the rejection is swallowed in-page
    run_script(
        driver,
        "const v = document.querySelector('video');"
        " if (v) { const p = v.play(); if (p && p.catch) { p.catch(() => {}); } }",
    )


def click_element(driver: Any, element: WebElement) -> bool:
    """Scroll into view and click; falls back to a JS click when intercepted."""
    run_script(driver, "arguments[0].scrollIntoView({block: 'center'});", element)
    try:
        element.click()
        return True
    except (ElementClickInterceptedException, ElementNotInteractableException) as exc:
        logging.debug("Native click refused (%s); retrying via JS.", exc.__class__.__name__)
    except WebDriverException as exc:
        logging.debug("Click failed: %s", exc)
        return False
    try:
        driver.execute_script("arguments[0].click();", element)
        return True
    except WebDriverException as exc:
        logging.debug("JS click failed: %s", exc)
        return False


# --- Navigation confirmation ---

def _page_left(previous_url: Optional[str], markers: Sequence[str]) -> Callable[[Any], bool]:
    def _condition(drv: Any) -> bool:
        url = current_url(drv)
        # An unreadable URL on either side proves nothing; fall through to the markers
        if url is not None and previous_url is not None and url != previous_url:
            return True
        if not markers:
            return False
        text = body_text(drv)
        # An unreadable body means the document is being replaced
        return text is None or not text_matches(text, markers)

    return _condition


def wait_for_transition(
    driver: Any,
    previous_url: Optional[str],
    *,
    timeout: float,
    interval: float,
    markers: Sequence[str] = config.GRID_MARKERS,
) -> bool:
    """Poll until the page left its previous state.

    Confirmed when the URL differs from ``previous_url`` or, for SPA
    navigation, when none of ``markers`` is visible any more. With no
    markers only the URL is checked. Returns False on timeout.
    """
    try:
        WebDriverWait(driver, timeout, poll_frequency=interval).until(_page_left(previous_url, markers))
        return True
    except TimeoutException:
        logging.debug("No navigation observed within %ss.", timeout)
        return False


def click_and_wait(
    driver: Any,
    element: WebElement,
    settings: AgentSettings,
    markers: Sequence[str] = config.GRID_MARKERS,
    timeout: Optional[float] = None,
) -> bool:
    """Click and confirm that the click produced a navigation."""
    previous_url = current_url(driver)
    if not click_element(driver, element):
        return False
    return wait_for_transition(
        driver,
        previous_url,
        timeout=settings.navigation_timeout if timeout is None else timeout,
        interval=settings.navigation_poll_interval,
        markers=markers,
    )


def page_contains(driver: Any, text: str) -> bool:
    needle = normalize_text(text)
    if not needle:
        return False
    return needle in normalize_text(body_text(driver))
