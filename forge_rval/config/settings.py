"""
Configuration management system for forge-rval.

Provides a hierarchical configuration with support for YAML files,
environment variables, and runtime overrides. Suite defaults (tolerance
preset, percentile policy, error gating) live here as explicit values and
are passed to the pipeline; nothing in the comparison core reads them
implicitly.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TolerancePreset(str, Enum):
    """Named tolerance presets."""
    STOCHASTIC = "stochastic"
    DETERMINISTIC = "deterministic"


TOLERANCE_FIELDS = ("mean", "std", "percentiles", "ks_pvalue", "ci_bounds")


class EngineConfig(BaseModel):
    """Target engine (forge) invocation settings."""
    model_config = ConfigDict(validate_assignment=True)

    forge_bin: Optional[Path] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    working_dir: Optional[Path] = None


class ReferenceConfig(BaseModel):
    """Reference validator (Rscript) invocation settings."""
    model_config = ConfigDict(validate_assignment=True)

    rscript_bin: str = "Rscript"
    validators_dir: Path = Path("validators/r")
    default_validator: str = "monte_carlo_validator.R"
    timeout_seconds: float = Field(default=30.0, gt=0)


class ToleranceSettings(BaseModel):
    """Suite-wide default tolerance: a preset plus optional field overrides."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    preset: TolerancePreset = TolerancePreset.STOCHASTIC
    overrides: Dict[str, float] = Field(default_factory=dict)

    @field_validator('overrides')
    @classmethod
    def validate_overrides(cls, v):
        for key, value in v.items():
            if key not in TOLERANCE_FIELDS:
                raise ValueError(f"unknown tolerance field '{key}'")
            if value < 0:
                raise ValueError(f"tolerance '{key}' must be non-negative")
        return v

    def default_tolerance(self):
        """Resolve the preset and overrides into a ToleranceSpec."""
        from ..validation.tolerances import ToleranceSpec, ToleranceOverride

        base = ToleranceSpec.preset(self.preset)
        if not self.overrides:
            return base
        return base.merged_with(ToleranceOverride(**self.overrides))


class RunConfig(BaseModel):
    """Orchestration policy."""
    model_config = ConfigDict(validate_assignment=True)

    max_workers: int = Field(default=1, ge=1)
    fail_fast: bool = False
    fail_on_error: bool = False

    # Percentile leniency for Monte Carlo noise; disable for reproducible cases
    lenient_percentiles: bool = True
    percentile_floor: float = Field(default=0.10, ge=0)
    percentile_std_fraction: float = Field(default=0.5, ge=0)
    checked_percentiles: List[str] = Field(default_factory=lambda: ["5", "50", "95"])

    temp_dir: Optional[Path] = None

    @field_validator('max_workers', mode='before')
    @classmethod
    def validate_max_workers(cls, v):
        if v is None:
            return 1
        return max(1, int(v))


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    level: LogLevel = LogLevel.INFO
    file_logging: bool = False
    log_file: Optional[Path] = None
    console_logging: bool = True
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ForgeRvalConfig(BaseModel):
    """Main configuration class for forge-rval."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    engine: EngineConfig = Field(default_factory=EngineConfig)
    reference: ReferenceConfig = Field(default_factory=ReferenceConfig)
    tolerance: ToleranceSettings = Field(default_factory=ToleranceSettings)
    run: RunConfig = Field(default_factory=RunConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            **kwargs: Override specific configuration sections
        """
        config_data: Dict[str, Any] = {}
        if config_file:
            config_data = self._load_config_file(config_file)

        _merge_sections(config_data, self._load_environment_variables())
        _merge_sections(config_data, kwargs)

        super().__init__(**config_data)

    @staticmethod
    def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = Path(config_file)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    @staticmethod
    def _load_environment_variables() -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        env_mappings = {
            'FORGE_BIN': ('engine', 'forge_bin'),
            'FORGE_RVAL_TIMEOUT': ('engine', 'timeout_seconds'),
            'FORGE_RVAL_RSCRIPT': ('reference', 'rscript_bin'),
            'FORGE_RVAL_VALIDATORS_DIR': ('reference', 'validators_dir'),
            'FORGE_RVAL_LOG_LEVEL': ('logging', 'level'),
            'FORGE_RVAL_MAX_WORKERS': ('run', 'max_workers'),
            'FORGE_RVAL_FAIL_ON_ERROR': ('run', 'fail_on_error'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue

            if key == 'max_workers':
                value = int(value)
            elif key == 'timeout_seconds':
                value = float(value)
            elif key == 'fail_on_error':
                value = value.lower() in ('true', '1', 'yes', 'on')
            elif key == 'level':
                value = value.upper()

            config.setdefault(section, {})[key] = value

        # One timeout variable drives both external invocations
        if 'timeout_seconds' in config.get('engine', {}):
            config.setdefault('reference', {})['timeout_seconds'] = config['engine']['timeout_seconds']

        return config

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save current configuration to YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False, indent=2)

    def update(self, **kwargs) -> None:
        """Update configuration values, accepting 'section.key' names."""
        for key, value in kwargs.items():
            if '.' in key:
                section, subkey = key.split('.', 1)
                section_obj = getattr(self, section, None)
                if section_obj is not None and subkey in type(section_obj).model_fields:
                    setattr(section_obj, subkey, value)
            elif key in type(self).model_fields:
                setattr(self, key, value)


def _merge_sections(base: Dict[str, Any], extra: Dict[str, Any]) -> None:
    """Merge section dictionaries one level deep, in place."""
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update(value)
        else:
            base[key] = value


# Default configuration instance
_default_config: Optional[ForgeRvalConfig] = None

def get_default_config() -> ForgeRvalConfig:
    """Get the default configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = ForgeRvalConfig()
    return _default_config


def reset_default_config() -> None:
    """Drop the cached default configuration (for testing purposes)."""
    global _default_config
    _default_config = None
