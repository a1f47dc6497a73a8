"""Loading and time-bounded caching of the budget configuration file."""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from . import config
from .budget import BudgetConfig, validate_budget_config
from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


def load_budget_config(path: Path | None = None) -> BudgetConfig:
    target = Path(path) if path else config.BUDGET_CONFIG_PATH
    if not target.exists():
        raise ConfigValidationError(f"Budget config not found: {target}")
    try:
        with target.open('r', encoding='utf-8') as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"Budget config {target} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise ConfigValidationError(f"Could not read budget config {target}: {exc}") from exc

    budget = validate_budget_config(data)
    logger.info("Loaded budget config from %s", target)
    return budget


class BudgetConfigCache:
    """Holds the last loaded config for ``ttl`` seconds.

    The clock is injectable so expiry can be driven from tests. A failed
    reload raises and leaves the previous entry untouched.
    """

    def __init__(
        self,
        path: Path | None = None,
        ttl: float = config.CONFIG_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
        loader: Callable[[Path], BudgetConfig] = load_budget_config,
    ):
        self.path = Path(path) if path else config.BUDGET_CONFIG_PATH
        self.ttl = ttl
        self._clock = clock
        self._loader = loader
        self._value: Optional[BudgetConfig] = None
        self._loaded_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def age(self) -> Optional[float]:
        if self._loaded_at is None:
            return None
        return self._clock() - self._loaded_at

    def is_fresh(self) -> bool:
        age = self.age
        return self._value is not None and age is not None and age < self.ttl

    def get(self) -> BudgetConfig:
        with self._lock:
            if self.is_fresh():
                return self._value
            value = self._loader(self.path)
            self._value = value
            self._loaded_at = self._clock()
            logger.debug("Budget config cache refreshed from %s", self.path)
            return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None
