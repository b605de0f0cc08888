# src/run_agent.py

import argparse
import datetime
import json
import logging
import os
import random
import sys
from typing import Any, Callable, Optional

import sentry_sdk
from dotenv import load_dotenv
from sentry_sdk.integrations.logging import LoggingIntegration

from src.portal.config import AgentSettings, load_settings
from src.portal.navigation import AuthenticationError, create_driver, launch_and_login
from src.portal.session import SessionStore
from src.portal.utils import Pacer
from src.progress.driver import process_all_courses
from src.progress.states import RunReport
from src.scheduler import start_scheduler

SENSITIVE_PATTERNS = (
    "ESTACIO_SENHA",
    "AGENT_PASSWORD",
    "COOKIES_BASE64",
    "PASSWORD",
    "COOKIE",
)


def sanitize_event(event, hint):
    """Redact credentials and cookies from monitoring events."""

    def contains_sensitive(text: str) -> bool:
        upper_text = text.upper()
        return any(pattern in upper_text for pattern in SENSITIVE_PATTERNS)

    def sanitize(value):
        if isinstance(value, dict):
            for key, val in list(value.items()):
                if contains_sensitive(str(key)):
                    value[key] = "[REDACTED]"
                    continue
                if isinstance(val, str) and contains_sensitive(val):
                    value[key] = "[REDACTED]"
                else:
                    sanitize(val)
        elif isinstance(value, list):
            for idx, item in enumerate(value):
                if isinstance(item, str) and contains_sensitive(item):
                    value[idx] = "[REDACTED]"
                else:
                    sanitize(item)

    sanitize(event)
    return event


def configure_logging(log_dir: str = "logs") -> None:
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(module)s - %(message)s",
        handlers=[
            logging.FileHandler(os.path.join(log_dir, "agent.log")),
            logging.StreamHandler(),
        ],
    )


def configure_monitoring(settings: AgentSettings) -> bool:
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        before_send=sanitize_event,
    )
    logging.info("Sentry monitoring initialized for the agent")
    return True


def save_run_summary(report: RunReport, log_dir: str = "logs", status_path: str = "data/agent_status.json") -> str:
    """Save the run summary and a concise status file for external monitors."""
    summary = report.to_dict()
    os.makedirs(log_dir, exist_ok=True)
    filename = os.path.join(log_dir, f"run_summary_{report.started_at.strftime('%Y%m%d_%H%M%S')}.json")
    with open(filename, "w") as f:
        json.dump(summary, f, indent=2)

    status_dir = os.path.dirname(status_path)
    if status_dir:
        os.makedirs(status_dir, exist_ok=True)
    with open(status_path, "w") as f:
        json.dump(
            {
                "timestamp": datetime.datetime.now().isoformat(),
                "status": "SUCCESS" if report.succeeded and not report.items_abandoned else "FAILURE",
                "metrics": summary["statistics"],
            },
            f,
            indent=2,
        )
    logging.info("📄 Run summary saved to %s", filename)
    return filename


def prepare_session_store(settings: AgentSettings) -> SessionStore:
    """Session store for this process; the cookie export is written only here."""
    store = SessionStore(settings.auth_state_file, settings.cookies_base64)
    store.bootstrap()
    return store


def run_once(
    settings: Optional[AgentSettings] = None,
    *,
    driver_factory: Callable[[AgentSettings], Any] = create_driver,
    store: Optional[SessionStore] = None,
    pacer: Optional[Pacer] = None,
    rng: Optional[random.Random] = None,
) -> RunReport:
    """One full pass: authenticate, then work through every course.

    Long-lived callers pass the ``store`` prepared once at startup so that
    cookies persisted after a login survive into the next run.
    """
    settings = settings or load_settings()
    store = store or prepare_session_store(settings)
    pacer = pacer or Pacer()
    rng = rng or random.Random()

    report = RunReport()
    logging.info("=== Run started %s ===", report.started_at.isoformat(timespec="seconds"))
    try:
        with launch_and_login(settings, store, driver_factory) as driver:
            process_all_courses(driver, settings, pacer, rng, report)
    except AuthenticationError as auth_err:
        logging.critical("❌ Authentication failed: %s", auth_err)
        report.error = f"authentication: {auth_err}"
        if settings.sentry_dsn:
            sentry_sdk.capture_exception(auth_err)
    except Exception as run_err:
        logging.critical("❌ Run failed with critical error: %s", run_err, exc_info=True)
        report.error = str(run_err)
        if settings.sentry_dsn:
            with sentry_sdk.new_scope() as scope:
                scope.set_context("run", {"courses_attempted": len(report.courses)})
                sentry_sdk.capture_exception(run_err)
    finally:
        report.finished_at = datetime.datetime.now()

    logging.info(
        "📈 Run Metrics | courses=%s opened=%s items_done=%s items_abandoned=%s error=%s",
        len(report.courses),
        sum(1 for c in report.courses if c.opened),
        report.items_done,
        report.items_abandoned,
        report.error,
    )
    for course in report.courses:
        logging.info("   %s -> %s", course.label, course.status)
    return report


def _scheduled_run(settings: AgentSettings, store: SessionStore) -> None:
    report = run_once(settings, store=store)
    try:
        save_run_summary(report)
    except OSError as summary_err:
        logging.error("Failed to save run summary: %s", summary_err)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Portal lesson autopilot")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--now", action="store_true", help="Run immediately before starting the scheduler")
    args = parser.parse_args(argv)

    configure_logging()
    load_dotenv()
    settings = load_settings()
    configure_monitoring(settings)
    store = prepare_session_store(settings)

    if args.once:
        report = run_once(settings, store=store)
        try:
            save_run_summary(report)
        except OSError as summary_err:
            logging.error("Failed to save run summary: %s", summary_err)
        return 0 if report.succeeded else 1

    if args.now or settings.run_immediately:
        logging.info("⚡ Immediate run requested; running now...")
        _scheduled_run(settings, store)

    start_scheduler(settings, lambda: _scheduled_run(settings, store))
    return 0


if __name__ == "__main__":
    sys.exit(main())
