"""
Shape heuristics for the circular "open/advance" icon button.

The portal renders its primary action as a round icon button with no stable
attribute to select it by; size, squareness and a nested svg are the signal.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from selenium.webdriver.remote.webelement import WebElement

from . import config
from .utils import safe_rect, try_find


@dataclass(frozen=True)
class BoxShape:
    width: float
    height: float
    has_icon: bool


def classify_shape(shape: BoxShape, thresholds: config.ShapeThresholds = config.GRID_ARROW_SHAPE) -> bool:
    if shape.width < thresholds.min_size or shape.height < thresholds.min_size:
        return False
    if abs(shape.width - shape.height) > thresholds.square_tolerance:
        return False
    return shape.has_icon


def read_shape(button: WebElement) -> Optional[BoxShape]:
    rect = safe_rect(button)
    if rect is None:
        return None
    return BoxShape(
        width=float(rect.get("width") or 0),
        height=float(rect.get("height") or 0),
        has_icon=try_find(button, config.ICON_CSS) is not None,
    )


def is_primary_action(button: WebElement, thresholds: config.ShapeThresholds = config.GRID_ARROW_SHAPE) -> bool:
    shape = read_shape(button)
    return shape is not None and classify_shape(shape, thresholds)


def pick_primary_action(
    buttons: Iterable[WebElement],
    thresholds: config.ShapeThresholds = config.GRID_ARROW_SHAPE,
) -> Optional[WebElement]:
    """Last qualifying button in document order.

    Informational buttons in a tile render before the open arrow.
    """
    chosen = None
    for button in buttons:
        if is_primary_action(button, thresholds):
            chosen = button
    return chosen


def center_of(element: WebElement) -> Optional[Tuple[float, float]]:
    rect = safe_rect(element)
    if rect is None:
        return None
    x = float(rect.get("x") or 0)
    y = float(rect.get("y") or 0)
    return x + float(rect.get("width") or 0) / 2, y + float(rect.get("height") or 0) / 2


def center_distance(a: WebElement, b: WebElement) -> float:
    ca, cb = center_of(a), center_of(b)
    if ca is None or cb is None:
        return math.inf
    return math.hypot(ca[0] - cb[0], ca[1] - cb[1])
