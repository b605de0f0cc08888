"""
Text matching over rendered elements.

Elements are located by normalized substring match against their visible
text: whitespace collapsed, diacritics stripped and case folded, so that a
keyword stored as "calculo" matches a tile rendered as "CÁLCULO".
"""

from __future__ import annotations

import logging
import unicodedata
from typing import Any, Iterable, List, Optional, Sequence

from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement

from .utils import try_find_all


def normalize_text(text: Optional[str], strip_accents: bool = True) -> str:
    collapsed = " ".join((text or "").split())
    if strip_accents:
        decomposed = unicodedata.normalize("NFD", collapsed)
        collapsed = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return collapsed.casefold()


def text_matches(text: Optional[str], keywords: Iterable[str], strip_accents: bool = True) -> bool:
    """True when any keyword occurs in the normalized text."""
    haystack = normalize_text(text, strip_accents)
    if not haystack:
        return False
    for keyword in keywords:
        needle = normalize_text(keyword, strip_accents)
        if needle and needle in haystack:
            return True
    return False


def read_text(element: WebElement) -> Optional[str]:
    """Visible text of ``element``, or None when the handle is unusable."""
    try:
        return element.text or ""
    except WebDriverException as exc:
        logging.debug("Unable to read element text: %s", exc)
        return None


def find_element_by_text(
    root: Any,
    selector: str,
    keywords: Sequence[str],
    strip_accents: bool = True,
) -> Optional[WebElement]:
    """First element under ``root`` matching ``selector`` whose text contains a keyword."""
    for element in try_find_all(root, selector):
        if text_matches(read_text(element), keywords, strip_accents):
            return element
    return None


def find_all_by_text(
    root: Any,
    selector: str,
    keywords: Sequence[str],
    strip_accents: bool = True,
    innermost: bool = False,
) -> List[WebElement]:
    """All matching elements in traversal order.

    With ``innermost`` set, a match that contains another match is dropped:
    a wrapper ``div`` carries the text of every control inside it.
    """
    matches = [
        element
        for element in try_find_all(root, selector)
        if text_matches(read_text(element), keywords, strip_accents)
    ]
    if not innermost or len(matches) < 2:
        return matches
    return [element for element in matches if not _contains_any(element, matches)]


def _contains_any(element: WebElement, candidates: List[WebElement]) -> bool:
    others = [other for other in candidates if other != element]
    if not others:
        return False
    for descendant in try_find_all(element, "*", By.CSS_SELECTOR):
        if any(descendant == other for other in others):
            return True
    return False
