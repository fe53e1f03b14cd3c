"""
Auto-save configuration and contextvars-based default scoping.

AutoSaveConfig is an immutable dataclass. Engines created without an explicit
config pick up the current scoped config, so an embedding application can set
defaults once for a whole page of forms:

    with config_context(debounce_delay_ms=500):
        engine = AutoSaveEngine(initial, persist)   # uses 500ms debounce
"""

import contextvars
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Generator, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoSaveConfig:
    """Timing and retry settings for one engine. All delays in milliseconds."""
    enabled: bool = True
    debounce_delay_ms: int = 2000
    periodic_interval_ms: int = 30000
    max_retries: int = 3
    retry_delay_ms: int = 5000

    def __post_init__(self):
        if self.debounce_delay_ms < 0:
            raise ValueError(f"debounce_delay_ms must be >= 0, got {self.debounce_delay_ms}")
        if self.periodic_interval_ms <= 0:
            raise ValueError(f"periodic_interval_ms must be > 0, got {self.periodic_interval_ms}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.retry_delay_ms < 0:
            raise ValueError(f"retry_delay_ms must be >= 0, got {self.retry_delay_ms}")

    def merged(self, **overrides: Any) -> 'AutoSaveConfig':
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **overrides)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any], base: Optional['AutoSaveConfig'] = None) -> 'AutoSaveConfig':
        """Build a config from a partial mapping.

        Accepts the field names above and the camelCase keys form settings
        are stored with (debounceDelay, interval, maxRetries, retryDelay).
        """
        overrides = {}
        valid = {f.name for f in fields(cls)}
        for key, value in mapping.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in valid:
                raise ValueError(f"Unknown auto-save config key: {key!r}")
            overrides[name] = value
        return (base or cls()).merged(**overrides)


_CAMEL_ALIASES = {
    'debounceDelay': 'debounce_delay_ms',
    'debounceDelayMs': 'debounce_delay_ms',
    'interval': 'periodic_interval_ms',
    'periodicIntervalMs': 'periodic_interval_ms',
    'maxRetries': 'max_retries',
    'retryDelay': 'retry_delay_ms',
    'retryDelayMs': 'retry_delay_ms',
}

DEFAULT_CONFIG = AutoSaveConfig()

# Current scoped config; falls back to DEFAULT_CONFIG outside any config_context()
current_config = contextvars.ContextVar('current_autosave_config', default=DEFAULT_CONFIG)


def get_current_config() -> AutoSaveConfig:
    """Config engines should use when none is passed explicitly."""
    return current_config.get()


@contextmanager
def config_context(config: Optional[AutoSaveConfig] = None, **overrides: Any) -> Generator[AutoSaveConfig, None, None]:
    """Scope a default config.

    Args:
        config: Base config for the scope. Defaults to the enclosing scope's config.
        **overrides: Field overrides applied on top of the base.

    Usage:
        with config_context(max_retries=5):
            with config_context(enabled=False):
                # max_retries=5, enabled=False
    """
    base = config if config is not None else current_config.get()
    scoped = base.merged(**overrides) if overrides else base
    token = current_config.set(scoped)
    logger.debug(f"CONFIG: entered scope {scoped}")
    try:
        yield scoped
    finally:
        current_config.reset(token)
