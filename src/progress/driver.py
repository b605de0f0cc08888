"""
Lesson/quiz progress driver.

Each content item walks an explicit state machine:

    IDLE -> ADVANCING -> WATCHING -> COMPLETABLE -> COMPLETED -> QUIZ_SEARCH
         -> QUIZ_ANSWERING -> SUBMITTED -> DONE

with ABANDONED as the second terminal state. Every transition reads the
page again; nothing is remembered between transitions except the trace.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from selenium.common.exceptions import WebDriverException
from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

from src.portal import config
from src.portal.cards import discover_course_buttons, open_course_by_index, open_course_by_title
from src.portal.config import AgentSettings
from src.portal.matching import find_all_by_text, find_element_by_text, read_text
from src.portal.navigation import (
    click_element,
    current_url,
    goto_home,
    play_first_video,
    scroll_page,
    wait_for_transition,
)
from src.portal.utils import Pacer
from .quiz import answer_visible_questions
from .states import CourseOutcome, ItemOutcome, LessonState, RunReport

_TIMER_RE = re.compile(config.COMPLETION_TIMER_PATTERN)


@dataclass
class LessonContext:
    driver: Any
    settings: AgentSettings
    pacer: Pacer
    rng: random.Random
    outcome: ItemOutcome


# --- Building blocks ---

def hold_watch_time(driver: Any, minutes: float, pacer: Pacer, scroll_interval: float = 30.0) -> float:
    """Stay on the lesson for ``minutes``, scrolling a little every interval.

    The wait is never cut short: the platform counts time on page, not
    playback state. Returns the seconds waited.
    """
    total = max(0.0, minutes * 60)
    waited = 0.0
    logging.info("⏳ Holding lesson for %s minutes...", minutes)
    while waited < total:
        chunk = min(scroll_interval, total - waited)
        pacer.sleep(chunk)
        waited += chunk
        scroll_page(driver, config.WATCH_SCROLL_PIXELS)
    return waited


def completion_locked(label: Optional[str]) -> bool:
    """True while the control shows its countdown, e.g. "(04:59)"."""
    return bool(_TIMER_RE.search(label or ""))


def find_completion_control(driver: Any):
    control = find_element_by_text(driver, config.BUTTON_LIKE_CSS, config.COMPLETION_KEYWORDS)
    if control is not None:
        return control
    fallbacks = find_all_by_text(
        driver, config.COMPLETION_FALLBACK_CSS, config.COMPLETION_KEYWORDS, innermost=True
    )
    return fallbacks[0] if fallbacks else None


def _try_mark_completed(driver: Any) -> bool:
    control = find_completion_control(driver)
    if control is None:
        return False
    label = read_text(control)
    if label is None or completion_locked(label):
        return False
    return click_element(driver, control)


def mark_lesson_completed(driver: Any, settings: AgentSettings, pacer: Pacer) -> bool:
    """Click the "mark as studied" control once its countdown is gone."""
    retrying = Retrying(
        stop=stop_after_attempt(settings.completion_poll_attempts),
        wait=wait_fixed(settings.completion_poll_interval),
        retry=retry_if_result(lambda clicked: not clicked),
        sleep=pacer.sleep,
        retry_error_callback=lambda retry_state: False,
    )
    if retrying(_try_mark_completed, driver):
        logging.info("✅ Lesson marked as studied.")
        return True
    logging.warning("Could not mark lesson as studied (timer never cleared?).")
    return False


def find_quiz_entries(driver: Any) -> List[Any]:
    entries = find_all_by_text(driver, config.QUIZ_ENTRY_CSS, config.QUIZ_KEYWORDS, innermost=True)
    if entries:
        return entries
    return find_all_by_text(driver, config.QUIZ_ENTRY_FALLBACK_CSS, config.QUIZ_KEYWORDS, innermost=True)


def submit_activity(driver: Any, settings: AgentSettings, pacer: Pacer) -> Optional[bool]:
    """Click the submit control.

    Returns None when there is no usable submit control, otherwise whether
    a navigation followed the click.
    """
    button = find_element_by_text(driver, config.BUTTON_LIKE_CSS, config.SUBMIT_KEYWORDS)
    if button is None:
        return None
    previous_url = current_url(driver)
    if not click_element(driver, button):
        return None
    pacer.sleep(config.SUBMIT_PAUSE)
    return wait_for_transition(
        driver,
        previous_url,
        timeout=settings.submit_confirm_timeout,
        interval=settings.navigation_poll_interval,
        markers=(),
    )


# --- Transitions ---

def start(ctx: LessonContext) -> LessonState:
    return LessonState.ADVANCING


def advance(ctx: LessonContext) -> LessonState:
    # Not every item has an access/next control
    button = find_element_by_text(ctx.driver, config.BUTTON_LIKE_CSS, config.ADVANCE_KEYWORDS)
    if button is not None and click_element(ctx.driver, button):
        ctx.outcome.note("advanced")
        ctx.pacer.sleep(config.ADVANCE_PAUSE)
    return LessonState.WATCHING


def watch(ctx: LessonContext) -> LessonState:
    play_first_video(ctx.driver)
    hold_watch_time(ctx.driver, ctx.settings.watch_minutes, ctx.pacer, ctx.settings.watch_scroll_interval)
    return LessonState.COMPLETABLE


def complete(ctx: LessonContext) -> LessonState:
    if mark_lesson_completed(ctx.driver, ctx.settings, ctx.pacer):
        return LessonState.COMPLETED
    ctx.outcome.note("completion control never became available")
    return LessonState.ABANDONED


def after_completion(ctx: LessonContext) -> LessonState:
    return LessonState.QUIZ_SEARCH


def search_quiz(ctx: LessonContext) -> LessonState:
    logging.info("🔎 Looking for activities...")
    entries = find_quiz_entries(ctx.driver)
    if not entries:
        ctx.outcome.note("no activity found")
        return LessonState.DONE
    opened = 0
    for entry in entries:
        if click_element(ctx.driver, entry):
            opened += 1
            ctx.pacer.sleep(config.QUIZ_ENTRY_PAUSE)
    ctx.outcome.note(f"opened {opened} of {len(entries)} activity entries")
    return LessonState.QUIZ_ANSWERING


def answer_quiz(ctx: LessonContext) -> LessonState:
    answered = answer_visible_questions(ctx.driver, ctx.rng)
    ctx.outcome.note(f"answered {answered} questions")
    confirmed = submit_activity(ctx.driver, ctx.settings, ctx.pacer)
    if confirmed is None:
        logging.warning("No submit control found for the activity.")
        ctx.outcome.note("submit control not found")
        return LessonState.ABANDONED
    ctx.outcome.note("submission confirmed" if confirmed else "submitted, no navigation observed")
    return LessonState.SUBMITTED


def finish(ctx: LessonContext) -> LessonState:
    logging.info("✅ Activity submitted.")
    return LessonState.DONE


TRANSITIONS: Dict[LessonState, Callable[[LessonContext], LessonState]] = {
    LessonState.IDLE: start,
    LessonState.ADVANCING: advance,
    LessonState.WATCHING: watch,
    LessonState.COMPLETABLE: complete,
    LessonState.COMPLETED: after_completion,
    LessonState.QUIZ_SEARCH: search_quiz,
    LessonState.QUIZ_ANSWERING: answer_quiz,
    LessonState.SUBMITTED: finish,
}


def run_item(ctx: LessonContext) -> ItemOutcome:
    """Step one content item until it is DONE or ABANDONED."""
    outcome = ctx.outcome
    while not outcome.state.is_terminal:
        current = outcome.state
        try:
            next_state = TRANSITIONS[current](ctx)
        except Exception as exc:
            # A broken item must never stop the remaining items or courses
            logging.warning("Item %s abandoned during %s: %s", outcome.index, current.value, exc)
            outcome.note(f"{current.value} failed: {exc}")
            next_state = LessonState.ABANDONED
        outcome.move_to(next_state)
    return outcome


# --- Courses ---

def process_course(
    driver: Any,
    course: CourseOutcome,
    settings: AgentSettings,
    pacer: Pacer,
    rng: random.Random,
) -> CourseOutcome:
    """Work through up to ``max_items_per_course`` items of an opened course."""
    for index in range(settings.max_items_per_course):
        ctx = LessonContext(driver=driver, settings=settings, pacer=pacer, rng=rng, outcome=ItemOutcome(index=index + 1))
        course.items.append(run_item(ctx))

        back = find_element_by_text(driver, config.BACK_CSS, config.BACK_KEYWORDS)
        if back is not None and click_element(driver, back):
            pacer.sleep(config.BACK_PAUSE)
            continue
        break
    logging.info("✅ Items processed in %s: %s", course.label, len(course.items))
    return course


def _attempt_course(
    driver: Any,
    label: str,
    opener: Callable[[], bool],
    settings: AgentSettings,
    pacer: Pacer,
    rng: random.Random,
) -> CourseOutcome:
    course = CourseOutcome(label=label)
    try:
        course.opened = opener()
    except WebDriverException as exc:
        logging.warning("Error while opening %s: %s", label, exc)
        course.error = str(exc)
    if not course.opened:
        logging.info("↷ Could not open %s. Skipping...", label)
        return course

    try:
        process_course(driver, course, settings, pacer, rng)
    except Exception as exc:
        logging.warning("⚠️ Error in %s: %s", label, exc)
        course.error = str(exc)

    try:
        goto_home(driver, settings)
    except WebDriverException as exc:
        logging.debug("Could not return to the grid: %s", exc)
    return course


def process_all_courses(
    driver: Any,
    settings: AgentSettings,
    pacer: Pacer,
    rng: random.Random,
    report: Optional[RunReport] = None,
) -> RunReport:
    """Open every course on the grid (or by title as fallback) and process it."""
    report = report or RunReport()
    logging.info("🗂  Scanning courses...")
    goto_home(driver, settings)

    buttons = discover_course_buttons(driver)
    total = min(settings.max_courses, len(buttons))

    if not total and settings.course_titles:
        report.strategy = "title"
        logging.info("No open buttons detected; falling back to course titles.")
        for title in settings.course_titles[: settings.max_courses]:
            logging.info("=== 🎯 Opening by title: %s ===", title)
            report.courses.append(
                _attempt_course(
                    driver,
                    title,
                    lambda title=title: open_course_by_title(driver, title, settings, pacer),
                    settings,
                    pacer,
                    rng,
                )
            )
        return report

    if not total:
        logging.info("No course open buttons found on the grid.")
        return report

    logging.info("📦 Detected %s cards; processing up to %s.", len(buttons), total)
    for index in range(total):
        label = f"course {index + 1}/{total}"
        logging.info("=== 📚 %s ===", label)
        report.courses.append(
            _attempt_course(
                driver,
                label,
                lambda index=index: open_course_by_index(driver, index, settings),
                settings,
                pacer,
                rng,
            )
        )
    return report
