"""DayValet configuration loading."""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from croniter import croniter

from .errors import ConfigError

logger = logging.getLogger(__name__)


def _load_yaml(path: str) -> dict:
    """Read YAML config file with ${VAR} environment variable substitution."""
    try:
        import yaml
    except ImportError:
        raise ImportError(
            "pyyaml is required for config file loading. "
            "Install with: pip install pyyaml"
        )

    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    # Replace ${VAR} with environment variable values
    def _replace_env(match):
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' not set "
                f"(referenced in config file '{path}')"
            )
        return value

    resolved = re.sub(r"\$\{(\w+)\}", _replace_env, raw)
    try:
        data = yaml.safe_load(resolved)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    return data or {}


@dataclass
class ContentConfig:
    """External content endpoints (AI text, news, recommendations, greeting)."""
    base_url: str = "http://localhost:3000"
    content_path: str = "/api/ai-resource-recommend"
    news_path: str = "/api/ai-news-alert"
    recommendation_path: str = "/api/ai-content-recommend"
    greeting_path: str = "/api/ai-morning-greeting"
    evening_check_path: str = "/api/ai-evening-check"
    weekly_report_path: str = "/api/weekly-report"
    timeout: float = 15.0
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class TriggerSettings:
    """Cadences and gates for the auto-message engine."""
    density_gating: bool = True
    daily_message_cap: Optional[int] = 8  # None or 0 = unlimited
    news_cron: str = "0 9,13,17,21 * * *"
    goal_cron: str = "0 10,15 * * *"
    cron_window_minutes: int = 5
    idle_hours: List[int] = field(default_factory=lambda: [9, 22])  # inclusive range
    morning_hours: List[int] = field(default_factory=lambda: [5, 12])  # [start, end)
    morning_greeting: bool = True
    evening_check: bool = True
    evening_hours: List[int] = field(default_factory=lambda: [21, 22])  # [start, end)
    weekly_report: bool = True


@dataclass
class DayValetConfig:
    """Top-level configuration."""
    timezone: str = "Asia/Seoul"
    log_level: str = "INFO"
    fired_keys_path: str = "~/.dayvalet/triggers/fired.json"
    conversation_path: Optional[str] = "~/.dayvalet/conversation.jsonl"
    poll_interval: float = 60.0
    trend_reminder_delay: float = 60.0
    schedule_path: Optional[str] = None
    goals_path: Optional[str] = None
    goals_url: Optional[str] = None
    callback_url: Optional[str] = None
    content: ContentConfig = field(default_factory=ContentConfig)
    triggers: TriggerSettings = field(default_factory=TriggerSettings)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DayValetConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping, got {type(data).__name__}")
        storage = data.get("storage") or {}
        poller = data.get("poller") or {}
        content = data.get("content") or {}
        triggers = data.get("triggers") or {}
        schedule = data.get("schedule") or {}
        goals = data.get("goals") or {}
        callback = data.get("callback") or {}

        try:
            cfg = cls(
                timezone=data.get("timezone", "Asia/Seoul"),
                log_level=str(data.get("log_level", "INFO")).upper(),
                fired_keys_path=storage.get("fired_keys_path", cls.fired_keys_path),
                conversation_path=storage.get("conversation_path", cls.conversation_path),
                poll_interval=float(poller.get("interval_seconds", 60)),
                trend_reminder_delay=float(poller.get("trend_reminder_delay_seconds", 60)),
                schedule_path=schedule.get("path"),
                goals_path=goals.get("path"),
                goals_url=goals.get("url"),
                callback_url=callback.get("url"),
                content=ContentConfig(
                    base_url=content.get("base_url", ContentConfig.base_url).rstrip("/"),
                    content_path=content.get("content_path", ContentConfig.content_path),
                    news_path=content.get("news_path", ContentConfig.news_path),
                    recommendation_path=content.get("recommendation_path", ContentConfig.recommendation_path),
                    greeting_path=content.get("greeting_path", ContentConfig.greeting_path),
                    evening_check_path=content.get("evening_check_path", ContentConfig.evening_check_path),
                    weekly_report_path=content.get("weekly_report_path", ContentConfig.weekly_report_path),
                    timeout=float(content.get("timeout", ContentConfig.timeout)),
                    headers=dict(content.get("headers") or {}),
                ),
                triggers=TriggerSettings(
                    density_gating=bool(triggers.get("density_gating", True)),
                    daily_message_cap=triggers.get("daily_message_cap", 8),
                    news_cron=triggers.get("news_cron", TriggerSettings.news_cron),
                    goal_cron=triggers.get("goal_cron", TriggerSettings.goal_cron),
                    cron_window_minutes=int(triggers.get("cron_window_minutes", 5)),
                    idle_hours=list(triggers.get("idle_hours", [9, 22])),
                    morning_hours=list(triggers.get("morning_hours", [5, 12])),
                    morning_greeting=bool(triggers.get("morning_greeting", True)),
                    evening_check=bool(triggers.get("evening_check", True)),
                    evening_hours=list(triggers.get("evening_hours", [21, 22])),
                    weekly_report=bool(triggers.get("weekly_report", True)),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.poll_interval <= 0:
            raise ConfigError("poller.interval_seconds must be positive")
        if self.trend_reminder_delay < 0:
            raise ConfigError("poller.trend_reminder_delay_seconds must not be negative")
        for name in ("idle_hours", "morning_hours", "evening_hours"):
            hours = getattr(self.triggers, name)
            if len(hours) != 2 or not all(0 <= int(h) <= 24 for h in hours):
                raise ConfigError(f"triggers.{name} must be a [start, end] pair of hours")
        if self.triggers.cron_window_minutes <= 0:
            raise ConfigError("triggers.cron_window_minutes must be positive")
        for name in ("news_cron", "goal_cron"):
            expr = getattr(self.triggers, name)
            if not croniter.is_valid(expr):
                raise ConfigError(f"triggers.{name} is not a valid cron expression: {expr!r}")


def load_config(path: str) -> DayValetConfig:
    """Load and validate a DayValet YAML config file."""
    cfg = DayValetConfig.from_dict(_load_yaml(path))
    logger.info(f"Loaded config from {path} (timezone={cfg.timezone})")
    return cfg
