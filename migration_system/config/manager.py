"""
Configuration Manager

Hierarchical configuration for migration targets: .env files, an optional
YAML settings file and Prefect Secret/Variable blocks.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from ..error_handling import ConfigurationError, ErrorCodes, ErrorContext

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "development"
DEFAULT_TARGET = "default"
SETTINGS_FILE = "migration-config.yaml"

_TRUE_VALUES = ("true", "1", "yes", "on", "enabled")
_FALSE_VALUES = ("false", "0", "no", "off", "disabled")


def _env_token(value: str) -> str:
    return value.upper().replace("-", "_").replace(".", "_")


class ConfigManager:
    """
    Configuration manager with .env file support.

    Environment variables are loaded from envs/.env.{environment} and then
    envs/{target}/.env.{environment} (overrides).

    Variable lookup (most specific to least specific). Target-scoped sources
    always win over global ones:
    1. {ENV}_{TARGET}_{KEY} environment variable
    2. migration-config.yaml: environments.{env}.targets.{target}.{key}
    3. {ENV}_GLOBAL_{KEY} environment variable
    4. migration-config.yaml: environments.{env}.global.{key}, then global.{key}
    5. Prefect Variables: {env}_{target}_{key} then {env}_global_{key}

    Secrets skip the YAML file and fall back to Prefect Secret blocks
    ({env}-{target}-{key} then {env}-global-{key}).
    """

    def __init__(
        self,
        target: Optional[str] = None,
        environment: Optional[str] = None,
        base_dir: Optional[str] = None,
        use_prefect_blocks: Optional[bool] = None,
    ):
        """
        Initialize the configuration manager.

        Args:
            target: Name of the migration target (e.g., 'app_db')
            environment: Environment name (e.g., 'development', 'production').
                If None, detected from MIGRATION_ENVIRONMENT or PREFECT_ENVIRONMENT
            base_dir: Directory holding envs/ and migration-config.yaml
                (defaults to the working directory)
            use_prefect_blocks: Fall back to Prefect blocks; defaults to the
                MIGRATION_USE_PREFECT_BLOCKS environment variable, then True
        """
        self.target = target
        self.environment = environment or self._detect_environment()
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.loaded_files: list[Path] = []

        self._load_env_files()
        self._settings = self._load_settings_file()

        if use_prefect_blocks is None:
            use_prefect_blocks = self._parse_bool(
                "MIGRATION_USE_PREFECT_BLOCKS",
                os.getenv("MIGRATION_USE_PREFECT_BLOCKS"),
                True,
            )
        self.use_prefect_blocks = use_prefect_blocks

    def _detect_environment(self) -> str:
        """Detect current environment from environment variables."""
        return (
            os.getenv("MIGRATION_ENVIRONMENT")
            or os.getenv("PREFECT_ENVIRONMENT")
            or DEFAULT_ENVIRONMENT
        )

    def _load_env_files(self):
        """Load .env files in hierarchical order."""
        global_env_file = self.base_dir / "envs" / f".env.{self.environment}"
        if global_env_file.exists():
            load_dotenv(global_env_file)
            self.loaded_files.append(global_env_file)
            logger.info(f"Loaded global config: {global_env_file}")

        if self.target:
            target_env_file = self.base_dir / "envs" / self.target / f".env.{self.environment}"
            if target_env_file.exists():
                load_dotenv(target_env_file, override=True)
                self.loaded_files.append(target_env_file)
                logger.info(f"Loaded target config: {target_env_file}")

    def _load_settings_file(self) -> dict[str, Any]:
        settings_file = self.base_dir / SETTINGS_FILE
        if not settings_file.exists():
            return {}
        try:
            with open(settings_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {settings_file}: {e}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(file_path=str(settings_file), environment=self.environment),
                cause=e,
            )
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"{settings_file} must contain a mapping at the top level",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(file_path=str(settings_file)),
            )
        self.loaded_files.append(settings_file)
        logger.info(f"Loaded settings file: {settings_file}")
        return data

    def env_keys(self, key: str) -> list[str]:
        """Environment variable names checked for a key, most specific first."""
        env = _env_token(self.environment)
        keys = []
        if self.target:
            keys.append(f"{env}_{_env_token(self.target)}_{_env_token(key)}")
        keys.append(f"{env}_GLOBAL_{_env_token(key)}")
        return keys

    def _from_env(self, key: str) -> Optional[str]:
        for env_key in self.env_keys(key):
            value = os.getenv(env_key)
            if value is not None:
                return value
        return None

    def _settings_scopes(self) -> tuple[dict, list[dict]]:
        """YAML target scope and the global scopes, most specific first."""
        environment = (self._settings.get("environments") or {}).get(self.environment) or {}
        target_scope = {}
        if self.target:
            target_scope = (environment.get("targets") or {}).get(self.target) or {}
        return target_scope, [environment.get("global") or {}, self._settings.get("global") or {}]

    def _variable_sources(self, key: str):
        """Lookup sources for a variable: every target-scoped source before any global one."""
        target_scope, global_scopes = self._settings_scopes()
        env_keys = self.env_keys(key)
        if self.target:
            yield os.getenv(env_keys[0])
            yield target_scope.get(key)
        yield os.getenv(env_keys[-1])
        for scope in global_scopes:
            yield scope.get(key)

    def _block_names(self, key: str, separator: str) -> list[str]:
        key_part = key.lower().replace("_", separator)
        names = []
        if self.target:
            names.append(f"{self.environment}{separator}{self.target}{separator}{key_part}")
        names.append(f"{self.environment}{separator}global{separator}{key_part}")
        return names

    def get_secret(self, key: str, default: Any = None) -> Any:
        """
        Get secret with .env file support and hierarchical fallback.

        Args:
            key: Configuration key
            default: Default value if not found

        Returns:
            Secret value or default
        """
        value = self._from_env(key)
        if value is not None:
            return value

        if not self.use_prefect_blocks:
            return default

        from prefect.blocks.system import Secret

        for secret_name in self._block_names(key, "-"):
            try:
                return Secret.load(secret_name).get()
            except ValueError:
                continue
        return default

    def get_variable(self, key: str, default: Any = None) -> Any:
        """
        Get variable with .env file support and hierarchical fallback.

        Args:
            key: Configuration key
            default: Default value if not found

        Returns:
            Variable value or default
        """
        for value in self._variable_sources(key):
            if value is not None:
                return value

        if not self.use_prefect_blocks:
            return default

        from prefect.variables import Variable

        for var_name in self._block_names(key, "_"):
            try:
                value = Variable.get(var_name, default=None)
            except ValueError:
                continue
            if value is not None:
                return value
        return default

    def get_config(self, key: str, default: Any = None, is_secret: bool = False) -> Any:
        """Get configuration value (secret or variable)."""
        if is_secret:
            return self.get_secret(key, default)
        return self.get_variable(key, default)

    def get_bool(self, key: str, default: bool) -> bool:
        return self._parse_bool(key, self.get_variable(key), default)

    def get_int(self, key: str, default: int) -> int:
        """
        Get a positive integer configuration value.

        Raises:
            ConfigurationError: If the value is not a positive integer
        """
        value = self.get_variable(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        try:
            int_value = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Configuration {key} must be an integer, got: {value}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(environment=self.environment, target_id=self.target),
                cause=e,
            )
        if int_value <= 0:
            raise ConfigurationError(
                f"Configuration {key} must be positive, got: {int_value}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(environment=self.environment, target_id=self.target),
            )
        return int_value

    def get_list(self, key: str, default: Optional[list[str]] = None) -> list[str]:
        """Comma separated string or YAML list."""
        value = self.get_variable(key)
        if value is None:
            return list(default or [])
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        return [item.strip() for item in str(value).split(",") if item.strip()]

    def _parse_bool(self, key: str, value: Any, default: bool) -> bool:
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        lower_value = str(value).lower().strip()
        if lower_value in _TRUE_VALUES:
            return True
        if lower_value in _FALSE_VALUES:
            return False
        raise ConfigurationError(
            f"Configuration {key} must be a boolean value, got: {value}",
            error_code=ErrorCodes.CONFIG_INVALID_VALUE,
            context=ErrorContext(environment=self.environment, target_id=self.target),
        )


@dataclass
class MigrationSettings:
    """Resolved settings for one migration target."""

    target_id: str
    environment: str
    database_url: Optional[str] = None
    history_database_url: Optional[str] = None
    migration_dirs: list[str] = field(default_factory=lambda: ["migrations"])
    convention: str = "auto"
    backup_dir: str = "backups"
    backup_strategy: str = "auto"
    history_table: str = "schema_migration_history"
    lock_table: str = "schema_migration_lock"
    disabled_rules: list[str] = field(default_factory=list)
    pool_size: int = 5
    max_overflow: int = 10

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        overrides: Optional[dict[str, Any]] = None,
        require_database: bool = True,
    ) -> "MigrationSettings":
        """
        Read every setting for the config's target and validate it.

        Values in ``overrides`` that are not None win over configuration
        (used for command line options).

        Raises:
            ConfigurationError: If a required value is missing or invalid
        """
        defaults = cls(target_id=config.target or DEFAULT_TARGET, environment=config.environment)
        settings = cls(
            target_id=defaults.target_id,
            environment=config.environment,
            database_url=config.get_secret("database_url"),
            history_database_url=config.get_secret("history_database_url"),
            migration_dirs=config.get_list("migration_dirs", defaults.migration_dirs),
            convention=str(config.get_variable("convention", defaults.convention)),
            backup_dir=str(config.get_variable("backup_dir", defaults.backup_dir)),
            backup_strategy=str(config.get_variable("backup_strategy", defaults.backup_strategy)),
            history_table=str(config.get_variable("history_table", defaults.history_table)),
            lock_table=str(config.get_variable("lock_table", defaults.lock_table)),
            disabled_rules=config.get_list("disabled_rules"),
            pool_size=config.get_int("pool_size", defaults.pool_size),
            max_overflow=config.get_int("max_overflow", defaults.max_overflow),
        )

        for key, value in (overrides or {}).items():
            if value is None:
                continue
            if not hasattr(settings, key):
                raise ConfigurationError(
                    f"Unknown setting '{key}'",
                    error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                )
            setattr(settings, key, value)

        settings.validate(require_database=require_database)
        return settings

    def validate(self, require_database: bool = True) -> None:
        """
        Check the settings. ``require_database=False`` allows offline use
        such as validating migration sources.

        Raises:
            ConfigurationError: On the first missing or invalid value
        """
        from ..discovery.sources import CONVENTIONS
        from ..execution.backup import BACKUP_STRATEGIES
        from ..validation.rules import DEFAULT_RULES

        context = ErrorContext(environment=self.environment, target_id=self.target_id)

        if require_database and not self.database_url:
            env = _env_token(self.environment)
            raise ConfigurationError(
                f"Database URL not configured for target '{self.target_id}'",
                error_code=ErrorCodes.CONFIG_MISSING_REQUIRED_FIELD,
                context=context,
                remediation=(
                    f"Set {env}_{_env_token(self.target_id)}_DATABASE_URL or "
                    f"{env}_GLOBAL_DATABASE_URL, or pass --database-url"
                ),
            )
        if not self.migration_dirs:
            raise ConfigurationError(
                f"No migration directories configured for target '{self.target_id}'",
                error_code=ErrorCodes.CONFIG_MISSING_REQUIRED_FIELD,
                context=context,
            )
        if self.convention not in CONVENTIONS:
            raise ConfigurationError(
                f"Unknown convention '{self.convention}'. Expected one of: {', '.join(CONVENTIONS)}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=context,
            )
        if self.backup_strategy not in BACKUP_STRATEGIES:
            raise ConfigurationError(
                f"Unknown backup strategy '{self.backup_strategy}'. "
                f"Expected one of: {', '.join(BACKUP_STRATEGIES)}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=context,
            )
        known_rules = {rule.name for rule in DEFAULT_RULES}
        unknown = [rule for rule in self.disabled_rules if rule not in known_rules]
        if unknown:
            raise ConfigurationError(
                f"Unknown validation rule(s) in disabled_rules: {', '.join(unknown)}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=context,
            )

    def to_dict(self, mask_secrets: bool = True) -> dict[str, Any]:
        from ..connection import mask_url

        def render(url):
            if url is None:
                return None
            return mask_url(url) if mask_secrets else url

        return {
            "target_id": self.target_id,
            "environment": self.environment,
            "database_url": render(self.database_url),
            "history_database_url": render(self.history_database_url),
            "migration_dirs": list(self.migration_dirs),
            "convention": self.convention,
            "backup_dir": self.backup_dir,
            "backup_strategy": self.backup_strategy,
            "history_table": self.history_table,
            "lock_table": self.lock_table,
            "disabled_rules": list(self.disabled_rules),
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
        }
