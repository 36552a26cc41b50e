"""
Configuration loader for the Construction Budget App.

Loads settings from budget_config.yaml and provides typed access
to all configuration sections.
"""
import os
from pathlib import Path
from typing import Any, Optional
from functools import lru_cache

import yaml


# Default config path relative to project root
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "budget_config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


class BudgetConfig:
    """
    Configuration manager for the Construction Budget App.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise ConfigurationError(f"Config file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Recalculation
    # =========================================================================

    @property
    def recalculation(self) -> dict:
        """Recalculation numeric policy."""
        return self._config.get("recalculation", {})

    @property
    def decimal_places(self) -> int:
        """Places kept when a derived value is stored."""
        return int(self.recalculation.get("decimal_places", 2))

    @property
    def zero_tolerance(self) -> float:
        """Denominators at or below this magnitude are treated as zero."""
        return float(self.recalculation.get("zero_tolerance", 1e-9))

    # =========================================================================
    # Inline Updates
    # =========================================================================

    @property
    def updates(self) -> dict:
        """Inline update (write scheduling) configuration."""
        return self._config.get("updates", {})

    @property
    def debounce_ms(self) -> int:
        """Quiet period before a debounced write is issued."""
        return int(self.updates.get("debounce_ms", 500))

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    # =========================================================================
    # Formulas
    # =========================================================================

    @property
    def formulas(self) -> dict:
        """Spreadsheet formula constants."""
        return self._config.get("formulas", {})

    @property
    def labor_rate(self) -> float:
        """Hourly labor rate used for Labor Cost = Hours x rate."""
        return float(self.formulas.get("labor_rate", 90))

    # =========================================================================
    # Cost Codes
    # =========================================================================

    @property
    def cost_codes(self) -> dict:
        """Cost code configuration."""
        return self._config.get("cost_codes", {})

    @property
    def valid_cost_codes(self) -> list[str]:
        """Canonical (upper-case) cost codes accepted on import."""
        return [str(c).upper() for c in self.cost_codes.get("valid", [])]

    @property
    def default_cost_code_label(self) -> str:
        """Summary group label for items without a cost code."""
        return self.cost_codes.get("default_label", "No Code")

    def is_valid_cost_code(self, code: str) -> bool:
        """Check a cost code against the configured list (case-insensitive)."""
        if not self.valid_cost_codes:
            return True
        return (code or "").strip().upper() in self.valid_cost_codes

    # =========================================================================
    # Import
    # =========================================================================

    @property
    def import_settings(self) -> dict:
        """Spreadsheet import configuration."""
        return self._config.get("import", {})

    @property
    def skip_group_rows(self) -> bool:
        """Whether rows without any quantity are dropped on import."""
        return self.import_settings.get("skip_group_rows", True)

    @property
    def header_rows(self) -> int:
        """Number of header rows to skip at the top of a sheet."""
        return int(self.import_settings.get("header_rows", 1))

    # =========================================================================
    # Database
    # =========================================================================

    @property
    def database(self) -> dict:
        """Database configuration."""
        return self._config.get("database", {})

    @property
    def database_url(self) -> str:
        """Database URL; DATABASE_URL in the environment wins."""
        return os.getenv("DATABASE_URL") or self.database.get("url", "sqlite:///./budget.db")

    # =========================================================================
    # Raw Access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        """Get a top-level config value by key."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to config."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if key exists in config."""
        return key in self._config


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> BudgetConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.

    Returns:
        BudgetConfig singleton instance
    """
    path = Path(config_path) if config_path else None
    return BudgetConfig(path)


def reload_config() -> BudgetConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
