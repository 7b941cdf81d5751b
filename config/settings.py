#!/usr/bin/env python3
"""
Verifier Configuration
Handles environment variables and tuning knobs for the verification engine.

Priority (highest to lowest):
1. Environment variables (VERIFIER_*)
2. .env file (loaded into os.environ before settings creation)
3. VerifierSettings dataclass defaults
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from core.errors import ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = 'VERIFIER_'

SSL_MODES = ('disable', 'allow', 'prefer', 'require', 'verify-ca', 'verify-full')


@dataclass
class VerifierSettings:
    """Verification engine settings. All durations are in seconds."""

    # Database access
    connection_timeout: float = 30.0
    query_timeout: float = 60.0
    max_connections: int = 10
    postgres_sslmode: str = "prefer"

    # Verification
    max_concurrent_tables: int = 5
    processing_timeout: float = 30.0
    sample_size: int = 5
    enable_parallel: bool = True

    # Caches and pools
    schema_cache_ttl: float = 300.0
    network_idle_timeout: float = 300.0
    embedded_idle_timeout: float = 30.0
    max_embedded_handles: int = 10
    network_sweep_interval: float = 60.0
    embedded_sweep_interval: float = 300.0
    cache_sweep_interval: float = 60.0

    # Progress reporting
    progress_retention: float = 30.0

    # Runtime
    log_level: str = "INFO"
    application_name: str = "migration-verifier"

    # Read environment overrides; disabled when settings are built explicitly in tests
    read_environment: bool = True

    def __post_init__(self):
        """Apply VERIFIER_* environment overrides"""
        if not self.read_environment:
            return
        self.apply_overrides(os.environ)

    def apply_overrides(self, env: Mapping[str, str]) -> None:
        for f in fields(self):
            if f.name == 'read_environment':
                continue
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == '':
                continue
            current = getattr(self, f.name)
            try:
                if isinstance(current, bool):
                    value: Any = raw.strip().lower() not in ('false', '0', 'no', 'off')
                elif isinstance(current, int):
                    value = int(raw)
                elif isinstance(current, float):
                    value = float(raw)
                else:
                    value = raw.strip()
            except ValueError:
                raise ValidationError(
                    f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}",
                    {'setting': f.name},
                )
            setattr(self, f.name, value)

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)"""
        errors = []
        if self.connection_timeout < 1:
            errors.append('Connection timeout must be at least 1 second')
        if self.query_timeout <= 0:
            errors.append('Query timeout must be positive')
        if self.processing_timeout <= 0:
            errors.append('Processing timeout must be positive')
        if self.max_concurrent_tables < 1 or self.max_concurrent_tables > 20:
            errors.append('Max concurrent tables must be between 1 and 20')
        if self.max_connections < 1:
            errors.append('Max connections must be at least 1')
        if self.max_embedded_handles < 1:
            errors.append('Max embedded handles must be at least 1')
        if self.postgres_sslmode not in SSL_MODES:
            errors.append(f"PostgreSQL sslmode must be one of: {', '.join(SSL_MODES)}")
        if self.sample_size < 1:
            errors.append('Sample size must be at least 1')
        return errors

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get settings as dict for display"""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'read_environment'}


def _load_env_file(env_file: Path) -> None:
    """Load environment variables from .env file.

    Only sets values for keys not already in os.environ,
    ensuring exported env vars take precedence over .env file.
    """
    try:
        with open(env_file, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    key = key.strip()
                    if key not in os.environ:
                        os.environ[key] = value.strip().strip('"').strip("'")
    except OSError as e:
        logger.warning(f"Could not load .env file {env_file}: {e}")


def load_settings(env_file: Optional[Path] = None, **overrides) -> VerifierSettings:
    """
    Build validated settings from the environment.

    Args:
        env_file: Optional .env path (defaults to ./.env when present)
        **overrides: Explicit values that win over the environment

    Raises:
        ValidationError: when the resulting settings are inconsistent
    """
    env_path = env_file or Path.cwd() / '.env'
    if env_path.exists():
        _load_env_file(env_path)

    settings = VerifierSettings()
    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(settings, key):
            raise ValidationError(f"Unknown setting: {key}")
        setattr(settings, key, value)

    problems = settings.validate()
    if problems:
        raise ValidationError(
            f"Configuration validation failed: {'; '.join(problems)}",
            {'problems': problems},
        )
    return settings
