"""
Course card discovery on the dashboard grid.

Two ways in:
  - Index fast path: scan tiles that carry a card marker and take each tile's
    round "open" arrow.
  - Title fallback: find the course title on the page, climb to its tile and
    run the open strategies in priority order, scrolling the grid between
    attempts so lazily mounted tiles get rendered.
"""

from __future__ import annotations

import logging
import math
import string
from dataclasses import dataclass, field
from typing import Any, Callable, List, NamedTuple, Optional, Sequence, Tuple

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from selenium.webdriver.support.ui import WebDriverWait

from . import config
from .config import AgentSettings
from .geometry import center_distance, is_primary_action, pick_primary_action
from .matching import normalize_text, read_text, text_matches
from .navigation import (
    click_and_wait,
    goto_home,
    page_contains,
    run_script,
    scroll_by_half_viewport,
    scroll_to_top,
)
from .utils import Pacer, dedupe_elements, is_rendered, safe_rect, try_find, try_find_all


class CardMatch(NamedTuple):
    node: WebElement
    card: WebElement


@dataclass
class ResolutionContext:
    driver: Any
    nodes: List[WebElement]
    matches: List[CardMatch] = field(default_factory=list)
    thresholds: config.ShapeThresholds = config.TITLE_ARROW_SHAPE


Strategy = Callable[[ResolutionContext], Optional[WebElement]]


# --- Ownership chain ---

def parent_of(element: WebElement) -> Optional[WebElement]:
    return try_find(element, "./..", By.XPATH)


def _tag_name(element: WebElement) -> str:
    try:
        return (element.tag_name or "").lower()
    except WebDriverException:
        return ""


def is_card(element: WebElement) -> bool:
    if _tag_name(element) in config.CARD_TAGS:
        return True
    rect = safe_rect(element)
    if rect and rect.get("width", 0) >= config.CARD_MIN_WIDTH and rect.get("height", 0) >= config.CARD_MIN_HEIGHT:
        return True
    return text_matches(read_text(element), config.CARD_MARKERS)


def resolve_card(node: WebElement, max_depth: int = config.CARD_MAX_DEPTH) -> Optional[WebElement]:
    """Closest element on the node's ownership chain that looks like a tile.

    The node itself counts as the first step; None when nothing qualifies
    within ``max_depth`` steps.
    """
    current: Optional[WebElement] = node
    for _ in range(max_depth):
        if current is None:
            return None
        if is_card(current):
            return current
        current = parent_of(current)
    return None


def resolve_cards(nodes: Sequence[WebElement], max_depth: int = config.CARD_MAX_DEPTH) -> List[CardMatch]:
    matches = []
    for node in nodes:
        card = resolve_card(node, max_depth)
        if card is not None:
            matches.append(CardMatch(node, card))
    return matches


# --- Title lookup ---

_FOLD_ACCENTED = "ÁÀÂÃÄÉÈÊËÍÌÎÏÓÒÔÕÖÚÙÛÜÇÑáàâãäéèêëíìîïóòôõöúùûüçñ"
_FOLD_FROM = string.ascii_uppercase + _FOLD_ACCENTED
_FOLD_TO = string.ascii_lowercase + "".join(normalize_text(ch) for ch in _FOLD_ACCENTED)


def _xpath_literal(value: str) -> str:
    """Safely embed string literals inside XPath expressions."""

    if "'" not in value:
        return f"'{value}'"
    if '"' not in value:
        return f'"{value}"'

    parts = value.split("'")
    concat_parts: List[str] = []
    for idx, part in enumerate(parts):
        if part:
            concat_parts.append(f"'{part}'")
        if idx != len(parts) - 1:
            concat_parts.append("\"'\"")
    return "concat(" + ", ".join(concat_parts) + ")"


def build_title_xpath(title: str) -> str:
    """Innermost elements whose folded text contains the folded title."""
    needle = _xpath_literal(normalize_text(title))
    folded = f"translate(normalize-space(string(.)), '{_FOLD_FROM}', '{_FOLD_TO}')"
    return (
        f"//body//*[not(self::script or self::style)]"
        f"[contains({folded}, {needle})]"
        f"[not(*[contains({folded}, {needle})])]"
    )


def find_title_nodes_xpath(driver: Any, title: str) -> List[WebElement]:
    if not normalize_text(title):
        return []
    return [el for el in try_find_all(driver, build_title_xpath(title), By.XPATH) if is_rendered(el)]


# Same fold as ``normalize_text``, evaluated in one round trip over the whole
# document. Returns the innermost rendered matches.
TITLE_SCAN_SCRIPT = """
const needle = arguments[0];
const fold = (s) => (s || '').normalize('NFD').replace(/[\\u0300-\\u036f]/g, '')
    .replace(/\\s+/g, ' ').trim().toLowerCase();
const hits = [];
for (const el of document.body.querySelectorAll('*')) {
    if (el.tagName === 'SCRIPT' || el.tagName === 'STYLE') continue;
    if (!fold(el.innerText || el.textContent).includes(needle)) continue;
    const r = el.getBoundingClientRect();
    if (!r.width && !r.height) continue;
    hits.push(el);
}
return hits.filter((el) => !hits.some((other) => other !== el && el.contains(other)));
"""


def scan_title_nodes(driver: Any, title: str) -> List[WebElement]:
    """Full-document scan run in the page with the same normalization."""
    needle = normalize_text(title)
    if not needle:
        return []
    return list(run_script(driver, TITLE_SCAN_SCRIPT, needle) or [])


def find_title_nodes(driver: Any, title: str) -> List[WebElement]:
    nodes = find_title_nodes_xpath(driver, title)
    if nodes:
        return nodes
    logging.debug("XPath lookup found no node for '%s'; scanning the whole document.", title)
    return scan_title_nodes(driver, title)


# --- Open strategies ---

def by_card_button(ctx: ResolutionContext) -> Optional[WebElement]:
    for match in ctx.matches:
        arrow = pick_primary_action(try_find_all(match.card, "button"), ctx.thresholds)
        if arrow is not None:
            return arrow
    return None


def by_card_container(ctx: ResolutionContext) -> Optional[WebElement]:
    return ctx.matches[0].card if ctx.matches else None


def by_nearest_arrow(ctx: ResolutionContext) -> Optional[WebElement]:
    if not ctx.nodes:
        return None
    arrows = [b for b in try_find_all(ctx.driver, "button") if is_primary_action(b, ctx.thresholds)]
    best, best_distance = None, math.inf
    for node in ctx.nodes:
        for arrow in arrows:
            distance = center_distance(node, arrow)
            if distance < best_distance:
                best, best_distance = arrow, distance
    return best


OPEN_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("card-button", by_card_button),
    ("card-container", by_card_container),
    ("nearest-arrow", by_nearest_arrow),
)


def first_success(
    strategies: Sequence[Tuple[str, Strategy]],
    ctx: ResolutionContext,
) -> Optional[Tuple[str, WebElement]]:
    for label, strategy in strategies:
        try:
            target = strategy(ctx)
        except WebDriverException as exc:
            logging.debug("Open strategy '%s' failed: %s", label, exc)
            continue
        if target is not None:
            return label, target
    return None


def resolve_open_target(
    driver: Any,
    title: str,
    thresholds: config.ShapeThresholds = config.TITLE_ARROW_SHAPE,
) -> Optional[Tuple[str, WebElement]]:
    """Element to click to open the course titled ``title``, with the strategy label."""
    nodes = find_title_nodes(driver, title)
    if not nodes:
        return None
    ctx = ResolutionContext(driver=driver, nodes=nodes, matches=resolve_cards(nodes), thresholds=thresholds)
    return first_success(OPEN_STRATEGIES, ctx)


# --- Grid fast path ---

def _reading_order(element: WebElement) -> Tuple[float, float]:
    rect = safe_rect(element)
    if rect is None:
        return math.inf, math.inf
    return float(rect.get("y") or 0), float(rect.get("x") or 0)


def discover_course_buttons(
    driver: Any,
    thresholds: config.ShapeThresholds = config.GRID_ARROW_SHAPE,
) -> List[WebElement]:
    """One open control per tile, in on-screen reading order."""
    chosen = []
    for container in try_find_all(driver, config.CARD_CONTAINER_CSS):
        if not text_matches(read_text(container), config.CARD_MARKERS):
            continue
        buttons = try_find_all(container, "button")
        if not buttons:
            continue
        chosen.append(pick_primary_action(buttons, thresholds) or buttons[-1])
    return sorted(dedupe_elements(chosen), key=_reading_order)


def open_course_by_index(driver: Any, index: int, settings: AgentSettings) -> bool:
    goto_home(driver, settings)
    buttons = discover_course_buttons(driver)
    if index >= len(buttons):
        return False
    return click_and_wait(driver, buttons[index], settings)


def _wait_for_title(driver: Any, title: str, timeout: float = config.TITLE_PRESENCE_TIMEOUT) -> bool:
    try:
        WebDriverWait(driver, timeout, poll_frequency=config.TITLE_PRESENCE_POLL).until(
            lambda d: page_contains(d, title)
        )
        return True
    except TimeoutException:
        return False


def open_course_by_title(driver: Any, title: str, settings: AgentSettings, pacer: Optional[Pacer] = None) -> bool:
    """Open a course by its title, sweeping the grid downwards between attempts."""
    pacer = pacer or Pacer()
    goto_home(driver, settings)
    pacer.sleep(config.GRID_SETTLE_PAUSE)
    scroll_to_top(driver)

    if not _wait_for_title(driver, title):
        logging.debug("Title '%s' not visible yet; sweeping the grid anyway.", title)

    for step in range(-1, settings.title_scroll_steps):
        if step < 0:
            scroll_to_top(driver)
        else:
            scroll_by_half_viewport(driver)
        pacer.sleep(config.SCROLL_STEP_PAUSE)

        resolved = resolve_open_target(driver, title)
        if resolved is None:
            continue
        label, target = resolved
        logging.info("Opening '%s' via %s strategy (scroll step %s).", title, label, step + 1)
        return click_and_wait(driver, target, settings)

    return False
