"""Configuration for schemaseed."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration, read from ``SCHEMASEED_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEMASEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default="")
    db_schema: Optional[str] = Field(default=None)
    max_workers: int = Field(default=4, ge=1)
    log_level: str = Field(default="INFO")

    cache_ttl: int = Field(default=600)
    cache_max_entries: int = Field(default=100)
    cache_dir: Optional[Path] = Field(default=None)

    # Heuristic thresholds
    pattern_min_score: int = Field(default=10)
    junction_min_confidence: float = Field(default=0.7)
    junction_batch_size: int = Field(default=100, ge=1)
    low_confidence_rule_threshold: float = Field(default=0.7)
    low_confidence_workflow_threshold: float = Field(default=0.8)

    framework_keywords: List[str] = Field(
        default_factory=lambda: ["makerkit", "supabase", "personal_account", "membership"]
    )
    always_required_tables: List[str] = Field(
        default_factory=lambda: ["users", "accounts", "profiles"]
    )


class ConfigManager:
    """Loads settings plus an optional JSON overrides file."""

    def __init__(self, config_file: Optional[Path] = None, **overrides: Any) -> None:
        self.config_file = config_file
        file_values = self._load_file(config_file) if config_file else {}
        file_values.update({k: v for k, v in overrides.items() if v is not None})
        self.settings = Settings(**file_values)

    def _load_file(self, config_file: Path) -> Dict[str, Any]:
        """Read overrides from a JSON file; a missing file means no overrides."""
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid configuration file {config_file}: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_file} must contain a JSON object")
        return data

    def save(self, config_file: Optional[Path] = None) -> Path:
        """Write the current settings to a JSON file."""
        target = config_file or self.config_file
        if target is None:
            raise ValueError("No configuration file path given")

        target.parent.mkdir(parents=True, exist_ok=True)
        data = self.settings.model_dump(mode="json", exclude={"database_url"})
        with open(target, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        return target
