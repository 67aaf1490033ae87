"""Configuration for the expert rule engine."""

import os
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables from .env file
env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = PROJECT_ROOT / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Expert rule engine configuration."""

    # --- Storage ---
    EXPERT_RULES_DB_PATH: str = os.getenv(
        "EXPERT_RULES_DB_PATH", "~/.aegis/expert_rules.db"
    )

    # --- Evaluation ---
    # Standards year used when a test outcome does not carry one
    # (blank means the current calendar year)
    DEFAULT_STANDARDS_YEAR: int | None = (
        int(os.environ["DEFAULT_STANDARDS_YEAR"])
        if os.getenv("DEFAULT_STANDARDS_YEAR")
        else None
    )
    PARSE_CACHE_ENABLED: bool = _env_bool("PARSE_CACHE_ENABLED", "true")

    # --- Logging ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def get_default_year(cls) -> int:
        """Standards year to apply when a context omits one."""
        if cls.DEFAULT_STANDARDS_YEAR:
            return cls.DEFAULT_STANDARDS_YEAR
        return datetime.now().year


config = Config()
