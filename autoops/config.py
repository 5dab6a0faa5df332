"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.

Precedence (later wins):
1. Default values
2. Local config file (autoops_config.json)
3. Environment variables (``.env`` files are honoured)
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "autoops_config.json"

# field name -> environment variable
ENV_VARS: dict[str, str] = {
    "retry_delay_seconds": "AUTOOPS_RETRY_DELAY",
    "retry_critical_failures": "AUTOOPS_RETRY_CRITICAL",
    "evolution_sample_size": "AUTOOPS_EVOLUTION_SAMPLE",
    "max_stored_runs": "AUTOOPS_MAX_STORED_RUNS",
    "enable_optimization": "AUTOOPS_ENABLE_OPTIMIZATION",
    "skip_execution": "AUTOOPS_SKIP_EXECUTION",
    "skip_reflection": "AUTOOPS_SKIP_REFLECTION",
    "verbose": "AUTOOPS_VERBOSE",
    "run_timeout_seconds": "AUTOOPS_RUN_TIMEOUT",
    "log_level": "AUTOOPS_LOG_LEVEL",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}

# counts that fall back to their default when set below 1
_POSITIVE_FIELDS = ("max_stored_runs", "evolution_sample_size")


@dataclass
class OrchestratorConfig:
    """Phase switches for the orchestration controller."""
    enable_optimization: bool = True
    skip_execution: bool = False
    skip_reflection: bool = False
    verbose: bool = False
    run_timeout_seconds: Optional[float] = None


@dataclass
class AutoOpsConfig:
    """AutoOps configuration."""
    retry_delay_seconds: float = 0.5
    retry_critical_failures: bool = False
    evolution_sample_size: int = 20
    max_stored_runs: int = 1000
    enable_optimization: bool = True
    skip_execution: bool = False
    skip_reflection: bool = False
    verbose: bool = False
    run_timeout_seconds: Optional[float] = None
    log_level: str = "INFO"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "AutoOpsConfig":
        """
        Load configuration from defaults, the config file and the environment.

        Args:
            config_path: Config file to read (defaults to ./autoops_config.json)
        """
        load_dotenv(find_dotenv(usecwd=True))

        config: dict[str, Any] = {}

        config_path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    file_config = json.load(f)
                known = {f.name for f in fields(cls)}
                config.update({k: v for k, v in file_config.items() if k in known})
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        for name, env_var in ENV_VARS.items():
            value = os.environ.get(env_var)
            if value is not None and value != "":
                config[name] = value

        values = {name: _coerce(cls, name, value) for name, value in config.items()}
        for name in _POSITIVE_FIELDS:
            if name in values and values[name] < 1:
                logger.warning("Ignoring %s=%s; it must be at least 1", name, values[name])
                del values[name]

        return cls(**values)

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            enable_optimization=self.enable_optimization,
            skip_execution=self.skip_execution,
            skip_reflection=self.skip_reflection,
            verbose=self.verbose,
            run_timeout_seconds=self.run_timeout_seconds,
        )


def _coerce(cls: type, name: str, value: Any) -> Any:
    """Convert a file or environment value to the field's type."""
    default = next(f.default for f in fields(cls) if f.name == name)

    if name == "run_timeout_seconds":
        if value is None or (isinstance(value, str) and value.lower() in ("", "none")):
            return None
        return float(value)
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)
