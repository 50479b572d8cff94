from __future__ import annotations

import functools
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------- Enums ----------

class BrowserType(str, Enum):
    chromium = "chromium"
    firefox = "firefox"
    webkit = "webkit"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ---------- Settings ----------

class Settings(BaseSettings):
    """
    Central configuration for the handoff engine.

    Values load in this order of precedence:
      1) Environment variables
      2) .env file in project root
      3) Defaults below

    Delays and attempt ceilings are tuned to the rendering quirks of the
    support desk surface; treat them as defaults, not invariants.
    """

    # ---- Browser configuration ----
    HEADLESS: bool = Field(default=False, description="Run the browser headless")
    BROWSER_TYPE: BrowserType = Field(default=BrowserType.chromium, description="Playwright browser")
    VIEWPORT_WIDTH: int = Field(default=1366, ge=320, le=7680)
    VIEWPORT_HEIGHT: int = Field(default=768, ge=320, le=4320)
    SLOW_MO: int = Field(default=0, ge=0, description="Slow down actions (ms) for debugging")
    USER_AGENT: Optional[str] = Field(default=None)
    CDP_URL: Optional[str] = Field(default=None, description="Attach to a running browser instead of launching one")
    START_URL: Optional[str] = Field(default=None)
    STORAGE_STATE_FILE: Optional[Path] = Field(default=None, description="Persisted login session for launched browsers")

    PAGE_LOAD_TIMEOUT: int = Field(default=60000, ge=1000)
    ACTION_TIMEOUT_MS: int = Field(default=5000, ge=0, description="Upper bound for a single click/fill")

    # ---- Polling budgets ----
    MAX_ATTEMPTS: int = Field(default=25, ge=1)
    ATTEMPT_INTERVAL_MS: int = Field(default=200, ge=0)
    OPEN_OPTIONS_ATTEMPTS: int = Field(default=10, ge=1)
    SELECT_SERVICE_ATTEMPTS: int = Field(default=15, ge=1)
    LOOP_INTERVAL_MS: int = Field(default=300, ge=0)

    # ---- Settle delays ----
    WARMUP_DELAY_MS: int = Field(default=200, ge=0, description="Pause before the first step")
    SETTLE_DELAY_MS: int = Field(default=1000, ge=0, description="Pause before slow transitions")
    TEXT_ENTRY_SETTLE_MS: int = Field(default=800, ge=0)
    OPTION_SETTLE_MS: int = Field(default=500, ge=0, description="Pause around option list interactions")
    RUN_DEADLINE_MS: int = Field(default=0, ge=0, description="Abort between steps after this long (0 = off)")
    TAG_POLL_INTERVAL_MS: int = Field(default=600, ge=0, description="Polling interval while the tag widget loads")

    # ---- Surface selectors ----
    SUBMIT_SELECTOR: str = ".icon-label"
    WAIT_SWITCH_SELECTOR: str = "nz-switch#blocking button.ant-switch"
    PLACEHOLDER_SELECTOR: str = ".ant-select-selection__placeholder"
    OPTION_SELECTOR: str = ".ant-select-dropdown-menu-item"
    SEARCH_FIELD_SELECTOR: str = ".ant-select-search__field"
    CONTINUE_SELECTOR: str = "span.ng-star-inserted"
    MESSAGE_SELECTOR: str = "textarea.text-area"
    SEND_SELECTOR: str = "button#send_button"
    TAG_ADD_SELECTOR: str = ".anticon.anticon-plus"
    TAG_INPUT_SELECTOR: str = "#tags > div > div > ul > li > input"
    TAG_CHOICE_SELECTOR: str = ".ant-select-selection__choice__content"

    # ---- Surface labels ----
    SUBMIT_LABEL: str = "Enviar"
    SEARCH_LABEL: str = "Pesquisar..."
    CATEGORY_LABEL: str = "Suporte Externo"
    PROBLEM_PLACEHOLDER_LABEL: str = "Selecione os problemas"
    SERVICE_PLACEHOLDER_LABEL: str = "Selecione um serviço"
    CONTINUE_LABEL: str = "Continuar"
    CONCLUDE_LABEL: str = "Concluir"
    HOLDER_LABEL: str = "Titular"

    # ---- Logging ----
    LOG_LEVEL: LogLevel = Field(default=LogLevel.INFO)
    LOG_TO_FILE: bool = Field(default=False)
    LOG_FILE: Path = Field(default=Path("./handoff.log"))
    RUN_LOG_DIR: Optional[Path] = Field(default=None, description="Write one JSON log per run here")
    COLORIZED_OUTPUT: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore unknown envs to keep things flexible
    )

    @field_validator("LOG_FILE", "RUN_LOG_DIR", "STORAGE_STATE_FILE", mode="after")
    @classmethod
    def _absolutize(cls, v: Optional[Path]):
        if v is None:
            return v
        return v if v.is_absolute() else Path.cwd() / v

    @field_validator(
        "SUBMIT_SELECTOR",
        "WAIT_SWITCH_SELECTOR",
        "PLACEHOLDER_SELECTOR",
        "OPTION_SELECTOR",
        "SEARCH_FIELD_SELECTOR",
        "CONTINUE_SELECTOR",
        "MESSAGE_SELECTOR",
        "SEND_SELECTOR",
        "TAG_ADD_SELECTOR",
        "TAG_INPUT_SELECTOR",
        "TAG_CHOICE_SELECTOR",
        "SUBMIT_LABEL",
        "SEARCH_LABEL",
        "CATEGORY_LABEL",
        "PROBLEM_PLACEHOLDER_LABEL",
        "SERVICE_PLACEHOLDER_LABEL",
        "CONTINUE_LABEL",
        "CONCLUDE_LABEL",
        "HOLDER_LABEL",
    )
    @classmethod
    def _non_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("selectors and labels cannot be empty")
        return v

    def ensure_dirs(self) -> None:
        """Create required directories (idempotent)."""
        if self.LOG_TO_FILE:
            self.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        if self.RUN_LOG_DIR:
            self.RUN_LOG_DIR.mkdir(parents=True, exist_ok=True)

    # Convenience: Playwright launch options dict
    def playwright_launch_kwargs(self) -> dict:
        return {
            "headless": self.HEADLESS,
            "slow_mo": self.SLOW_MO,
        }

    # Convenience: Playwright new_context kwargs
    def playwright_context_kwargs(self) -> dict:
        viewport = {"width": self.VIEWPORT_WIDTH, "height": self.VIEWPORT_HEIGHT}
        ctx = {"viewport": viewport}
        if self.USER_AGENT:
            ctx["user_agent"] = self.USER_AGENT
        if self.STORAGE_STATE_FILE and self.STORAGE_STATE_FILE.exists():
            ctx["storage_state"] = str(self.STORAGE_STATE_FILE)
        return ctx


# --------- Public accessor (memoized) ---------

@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache settings once per process.
    Call `get_settings.cache_clear()` if you need to reload after changing env.
    """
    s = Settings()
    s.ensure_dirs()
    return s
