import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

STAGES = ("review", "score", "portfolio", "notification")

_HOUR = 3600
_DAY = 24 * _HOUR

DEFAULT_CONFIG: dict = {
    "env": "development",
    "database_path": ".prgrade.db",
    "llm_provider": "groq",  # groq | openai | anthropic
    "llm_model": None,  # None = provider default
    "llm_timeout": 30,
    "llm_max_retries": 3,
    "llm_cache_ttl": _HOUR,  # seconds; 0 disables the prompt response cache
    "github_timeout": 10,
    "max_diff_files": 5,
    "max_lines_per_file": 1000,
    "post_pr_comment": True,
    "stall_timeout": 60,
    "poll_interval": 1.0,
    "email_enabled": True,
    "email_from": "prgrade <noreply@prgrade.dev>",
    "frontend_url": "http://localhost:3000",
    "enqueue": {"max_retries": 3, "base_delay": 1.0, "max_delay": 30.0},
    "queues": {
        "review": {"attempts": 5, "keep_completed_age": _HOUR, "keep_failed_age": _DAY, "dead_letter": True},
        "score": {"attempts": 5, "keep_completed_age": _HOUR, "keep_failed_age": _DAY},
        "portfolio": {"attempts": 3, "keep_completed_age": _HOUR, "keep_failed_age": _DAY},
        "notification": {"attempts": 3, "keep_completed_age": _DAY, "keep_failed_age": 7 * _DAY, "concurrency": 3},
    },
    "discovery": {
        "automatic": {
            "primary": {"interval": 5.0, "max_attempts": 6, "timeout": 30.0},
            "diagnostic": {"interval": 3.0, "max_attempts": 20, "timeout": 60.0},
        },
        "manual": {
            "primary": {"interval": 2.0, "max_attempts": 3, "timeout": 6.0},
            "diagnostic": {"interval": 1.0, "max_attempts": 8, "timeout": 10.0},
        },
    },
}

# Stage concurrency when PRGRADE_ENV / config env is "production".
_PRODUCTION_CONCURRENCY = {"review": 3, "score": 2, "portfolio": 1, "notification": 3}


@dataclass(frozen=True)
class QueuePolicy:
    """Retry, retention and concurrency settings for one pipeline stage."""

    name: str
    attempts: int = 3
    backoff_delay: float = 2.0
    backoff_cap: float = 60.0
    keep_completed_age: int = _HOUR
    keep_completed_count: int = 1000
    keep_failed_age: int = _DAY
    dead_letter: bool = False
    concurrency: int = 1

    def backoff(self, attempts_made: int) -> float:
        """Delay before the next attempt after ``attempts_made`` failures."""
        return min(self.backoff_delay * 2 ** max(attempts_made - 1, 0), self.backoff_cap)


def _deep_merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = ".prgrade.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prgrade.yml in the current directory
      3. CLI argument overrides
      4. Environment variables (credentials and queue concurrency)
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config = _deep_merge(config, file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["env"] = os.environ.get("PRGRADE_ENV", config["env"])

    # Credentials are never read from the YAML file.
    config["github_webhook_secret"] = os.environ.get("GITHUB_WEBHOOK_SECRET")
    config["github_app_id"] = os.environ.get("GITHUB_APP_ID")
    # Private keys pasted into env files usually carry literal "\n" sequences.
    private_key = os.environ.get("GITHUB_PRIVATE_KEY")
    config["github_private_key"] = private_key.replace("\\n", "\n") if private_key else None
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["groq_api_key"] = os.environ.get("GROQ_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["resend_api_key"] = os.environ.get("RESEND_API_KEY")
    config["internal_token"] = os.environ.get("PRGRADE_INTERNAL_TOKEN")

    if os.environ.get("GROQ_MODEL") and config["llm_provider"] == "groq":
        config["llm_model"] = os.environ["GROQ_MODEL"]
    if os.environ.get("CACHE_TTL_SECONDS"):
        config["llm_cache_ttl"] = int(os.environ["CACHE_TTL_SECONDS"])
    if os.environ.get("EMAIL_FROM"):
        config["email_from"] = os.environ["EMAIL_FROM"]
    if os.environ.get("FRONTEND_URL"):
        config["frontend_url"] = os.environ["FRONTEND_URL"]

    for stage in STAGES:
        value = os.environ.get(f"QUEUE_CONCURRENCY_{stage.upper()}")
        if value:
            config["queues"].setdefault(stage, {})["concurrency"] = int(value)

    return config


def queue_policies(config: dict) -> dict[str, QueuePolicy]:
    """Build the per-stage QueuePolicy objects from a loaded config."""
    production = config.get("env") == "production"
    policies = {}
    for stage in STAGES:
        settings = dict(config.get("queues", {}).get(stage, {}))
        if "concurrency" not in settings:
            settings["concurrency"] = _PRODUCTION_CONCURRENCY[stage] if production else 1
        settings["concurrency"] = max(1, int(settings["concurrency"]))
        policies[stage] = QueuePolicy(name=stage, **settings)
    return policies
