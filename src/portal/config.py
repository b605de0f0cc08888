"""
Selenium-oriented configuration for the portal agent.

Keyword sets, selectors and geometry thresholds are plain module constants;
deployment values (URLs, credentials, budgets) come from ``AgentSettings``,
which is built once at the entry point and passed to every component.
"""

from typing import Annotated, List, NamedTuple, Optional, Tuple

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from selenium.webdriver.common.by import By

# --- Core URLs ---
BASE_URL = "https://estudante.estacio.br"
COURSES_URL = BASE_URL + "/disciplinas"

# Substring that identifies the login page in the current URL
LOGIN_URL_MARKER = "login"

# --- Login Page Selectors (Selenium) ---
# Ordered fallbacks, tried first to last
USERNAME_SELECTORS: Tuple[Tuple[str, str], ...] = (
    (By.CSS_SELECTOR, "input[type='email']"),
    (By.CSS_SELECTOR, "input[name='email']"),
)
PASSWORD_SELECTORS: Tuple[Tuple[str, str], ...] = (
    (By.CSS_SELECTOR, "input[type='password']"),
    (By.CSS_SELECTOR, "input[name='senha']"),
    (By.CSS_SELECTOR, "input[name='password']"),
)
LOGIN_BUTTON_SELECTORS: Tuple[Tuple[str, str], ...] = (
    (By.CSS_SELECTOR, "button[type='submit']"),
)

# --- Match Keyword Sets ---
# Stored already normalized (no accents, lower case). Order is priority.
ADVANCE_KEYWORDS = ("acessar conteudo", "avancar", "proximo")
COMPLETION_KEYWORDS = ("marcar como estudado",)
QUIZ_KEYWORDS = ("atividade", "teste", "avaliacao", "quiz", "prova", "multipla escolha")
SUBMIT_KEYWORDS = ("responda", "enviar", "finalizar", "submeter", "concluir")
BACK_KEYWORDS = ("voltar", "retornar")

# Text that is only visible while the dashboard grid is on screen
GRID_MARKERS = ("minhas disciplinas", "continue de onde parou")

# Text found inside a course tile
CARD_MARKERS = ("digital (ead)", "continue de onde parou")

# --- Structural selectors ---
BUTTON_LIKE_CSS = "button, a[role='button']"
COMPLETION_FALLBACK_CSS = "div"
CARD_CONTAINER_CSS = "article, section, div"
CARD_TAGS = frozenset({"article", "section"})
QUIZ_ENTRY_CSS = "a, button, [role='button']"
QUIZ_ENTRY_FALLBACK_CSS = "div, span"
BACK_CSS = "a, button"
QUESTION_BLOCK_CSS = ".question, .questao, .q-item, .enunciado, fieldset, .form-group"
QUESTION_OPTION_CSS = "label, .option, .alternativa, .answer, li"
RADIO_CSS = "input[type='radio']"
ICON_CSS = "svg"

# Countdown rendered inside the completion control label, e.g. "(04:59)"
COMPLETION_TIMER_PATTERN = r"\(\d+:\d+\)"


# --- Geometry thresholds ---
class ShapeThresholds(NamedTuple):
    min_size: float
    square_tolerance: float


# The grid scan and the title fallback were tuned separately
GRID_ARROW_SHAPE = ShapeThresholds(min_size=40, square_tolerance=16)
TITLE_ARROW_SHAPE = ShapeThresholds(min_size=36, square_tolerance=20)

CARD_MIN_WIDTH = 280
CARD_MIN_HEIGHT = 160
CARD_MAX_DEPTH = 10

# --- Pauses (seconds) ---
ADVANCE_PAUSE = 0.8
QUIZ_ENTRY_PAUSE = 0.8
BACK_PAUSE = 0.9
SUBMIT_PAUSE = 1.0
GRID_SETTLE_PAUSE = 0.8
SCROLL_STEP_PAUSE = 0.35
TITLE_PRESENCE_TIMEOUT = 6.0
TITLE_PRESENCE_POLL = 0.5
WATCH_SCROLL_PIXELS = 240


# --- Structured settings (via Pydantic Settings) ---
class AgentSettings(BaseSettings):
    """Centralized, typed settings for one agent deployment.

    Values can be configured via environment variables. Prefer the AGENT_*
    variants; the older unprefixed names are accepted too.
    The object is frozen: build it once and pass it around.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # --- Target portal ---
    course_url: str = Field(
        default=COURSES_URL,
        validation_alias=AliasChoices("AGENT_COURSE_URL", "COURSE_URL"),
    )
    login_url: str = Field(
        default=BASE_URL,
        validation_alias=AliasChoices("AGENT_LOGIN_URL", "LOGIN_URL"),
    )

    # --- Credentials / session ---
    username: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_USERNAME", "ESTACIO_EMAIL"),
    )
    password: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_PASSWORD", "ESTACIO_SENHA"),
    )
    cookies_base64: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AGENT_COOKIES_BASE64", "COOKIES_BASE64"),
    )
    auth_state_file: str = Field(
        default="data/cookies.json",
        validation_alias=AliasChoices("AGENT_AUTH_STATE_FILE"),
    )

    # --- Browser ---
    headless: bool = Field(
        default=True,
        validation_alias=AliasChoices("AGENT_HEADLESS", "HEADLESS"),
    )
    page_load_timeout: int = Field(
        default=60,
        validation_alias=AliasChoices("AGENT_PAGE_LOAD_TIMEOUT"),
    )
    login_timeout: int = Field(
        default=30,
        validation_alias=AliasChoices("AGENT_LOGIN_TIMEOUT"),
    )
    screenshot_dir: str = Field(
        default="logs/error_screenshots",
        validation_alias=AliasChoices("AGENT_SCREENSHOT_DIR"),
    )

    # --- Run budgets ---
    watch_minutes: float = Field(
        default=15,
        ge=0,
        validation_alias=AliasChoices("AGENT_WATCH_MINUTES", "WATCH_MINUTES"),
    )
    watch_scroll_interval: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("AGENT_WATCH_SCROLL_INTERVAL"),
    )
    max_courses: int = Field(
        default=12,
        ge=0,
        validation_alias=AliasChoices("AGENT_MAX_COURSES", "MAX_COURSES"),
    )
    max_items_per_course: int = Field(
        default=5,
        ge=0,
        validation_alias=AliasChoices("AGENT_MAX_ITEMS_PER_COURSE", "MAX_ITEMS_PER_COURSE"),
    )
    navigation_timeout: float = Field(
        default=10.0,
        validation_alias=AliasChoices("AGENT_NAVIGATION_TIMEOUT"),
    )
    navigation_poll_interval: float = Field(
        default=0.25,
        validation_alias=AliasChoices("AGENT_NAVIGATION_POLL_INTERVAL"),
    )
    submit_confirm_timeout: float = Field(
        default=3.0,
        validation_alias=AliasChoices("AGENT_SUBMIT_CONFIRM_TIMEOUT"),
    )
    completion_poll_attempts: int = Field(
        default=20,
        ge=1,
        validation_alias=AliasChoices("AGENT_COMPLETION_POLL_ATTEMPTS"),
    )
    completion_poll_interval: float = Field(
        default=6.0,
        validation_alias=AliasChoices("AGENT_COMPLETION_POLL_INTERVAL"),
    )
    title_scroll_steps: int = Field(
        default=12,
        ge=0,
        validation_alias=AliasChoices("AGENT_TITLE_SCROLL_STEPS"),
    )

    # Fallback discovery: ordered course titles, comma separated in env
    course_titles: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("AGENT_COURSE_TITLES", "COURSE_TITLES"),
    )

    # --- Scheduling ---
    cron_schedule: str = Field(
        default="0 7 * * *",
        validation_alias=AliasChoices("AGENT_CRON_SCHEDULE", "CRON_SCHEDULE"),
    )
    timezone: str = Field(
        default="America/Sao_Paulo",
        validation_alias=AliasChoices("AGENT_TIMEZONE", "TIMEZONE"),
    )
    run_immediately: bool = Field(
        default=False,
        validation_alias=AliasChoices("AGENT_RUN_IMMEDIATELY", "RUN_IMMEDIATELY"),
    )

    # --- Monitoring ---
    sentry_dsn: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SENTRY_DSN"),
    )
    sentry_environment: str = Field(
        default="production",
        validation_alias=AliasChoices("SENTRY_ENVIRONMENT"),
    )

    @field_validator("course_titles", mode="before")
    @classmethod
    def _split_titles(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(part).strip() for part in value if str(part).strip()]

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password and self.password.get_secret_value())


def load_settings(**overrides) -> AgentSettings:
    """Build the settings object for one process from env/.env plus overrides."""
    return AgentSettings(**overrides)
