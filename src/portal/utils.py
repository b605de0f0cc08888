"""Utility helpers for Selenium-based portal automation."""

from __future__ import annotations

import time
from typing import Any, Iterable, List, Optional, Tuple

from selenium.common.exceptions import NoSuchElementException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webdriver import WebDriver
from selenium.webdriver.remote.webelement import WebElement


Selector = Tuple[str, str]


class Pacer:
    """Sleep used for fixed pauses, watch time and completion polling.

    Production code sleeps for real; tests pass a virtual one so that
    fifteen-minute waits finish instantly while still being measured.
    Page-condition polling goes through ``WebDriverWait`` instead.
    """

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def resilient_find_element(driver: WebDriver, selectors: Iterable[Selector], name: str) -> WebElement:
    """Locate an element using a sequence of selector fallbacks.

    Each selector should be a tuple of (By, value). The function attempts them
    in order and returns the first successfully located element. If all
    selectors fail, a descriptive ``NoSuchElementException`` is raised.
    """

    last_error: Exception | None = None

    for by, value in selectors:
        try:
            return driver.find_element(by, value)
        except NoSuchElementException as exc:
            last_error = exc
            continue
        except Exception as exc:  # Catch intermittent driver issues without aborting the sequence.
            last_error = exc
            continue

    message = f"All selector fallbacks exhausted for '{name}'."
    if last_error is not None:
        raise NoSuchElementException(message) from last_error
    raise NoSuchElementException(message)


def try_find_all(root: Any, selector: str, by: str = By.CSS_SELECTOR) -> List[WebElement]:
    try:
        return list(root.find_elements(by, selector) or [])
    except WebDriverException:
        return []


def try_find(root: Any, selector: str, by: str = By.CSS_SELECTOR) -> Optional[WebElement]:
    try:
        return root.find_element(by, selector)
    except WebDriverException:
        return None


def safe_attr(el: WebElement, name: str) -> str:
    try:
        return el.get_attribute(name) or ""
    except WebDriverException:
        return ""


def safe_rect(el: WebElement) -> Optional[dict]:
    """Bounding box as ``{x, y, width, height}`` or None if unreadable."""
    try:
        rect = el.rect
    except WebDriverException:
        return None
    if not rect:
        return None
    return rect


def is_rendered(el: WebElement) -> bool:
    rect = safe_rect(el)
    return bool(rect and (rect.get("width") or rect.get("height")))


def dedupe_elements(elements: Iterable[WebElement]) -> List[WebElement]:
    """Drop repeated handles to the same node, keeping first occurrence order."""
    unique: List[WebElement] = []
    for element in elements:
        if any(element == seen for seen in unique):
            continue
        unique.append(element)
    return unique
