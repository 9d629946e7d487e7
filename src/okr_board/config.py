"""Load optional board configuration from `.okr_board/config.yaml`."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .io_utils import _load_data_with_error
from .task_engine.ordering import BASE_SCORE, DEFAULT_RESOLUTION, FIXED_STEP
from .task_engine.status import DEFAULT_UPLOADS_PREFIX

logger = logging.getLogger(__name__)

STATE_DIR_NAME = ".okr_board"
CONFIG_FILE = "config.yaml"

ENV_PREFIX = "OKR_BOARD_"


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: Mapping[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {raw!r}")


def _positive_float(raw: Any) -> float:
    value = float(raw)
    if value <= 0:
        raise ValueError(f"must be positive, got {value}")
    return value


def _non_negative_float(raw: Any) -> float:
    value = float(raw)
    if value < 0:
        raise ValueError(f"must not be negative, got {value}")
    return value


@dataclass(frozen=True)
class BoardSettings:
    """Tunables for ordering, dependency validation and evidence handling."""

    step: float = FIXED_STEP
    base: float = BASE_SCORE
    resolution: float = DEFAULT_RESOLUTION
    detect_cycles: bool = True
    uploads_prefix: str = DEFAULT_UPLOADS_PREFIX

    @classmethod
    def from_config(
        cls,
        config: Optional[Mapping[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "BoardSettings":
        """Build settings from the config mapping, then apply ``OKR_BOARD_*`` env overrides.

        Invalid values are logged and replaced by the defaults.
        """
        config = config or {}
        environ = os.environ if environ is None else environ
        defaults = cls()

        def pick(env_name: str, keys: tuple[str, ...], parse: Callable[[Any], Any], default: Any) -> Any:
            raw = environ.get(ENV_PREFIX + env_name)
            source = f"${ENV_PREFIX}{env_name}"
            if raw is None:
                raw = _get_nested(config, *keys)
                source = ".".join(keys)
            if raw is None:
                return default
            try:
                return parse(raw)
            except (TypeError, ValueError) as exc:
                logger.warning("Ignoring invalid %s=%r: %s", source, raw, exc)
                return default

        return cls(
            step=pick("STEP", ("ordering", "step"), _positive_float, defaults.step),
            base=pick("BASE", ("ordering", "base"), float, defaults.base),
            resolution=pick("RESOLUTION", ("ordering", "resolution"), _non_negative_float, defaults.resolution),
            detect_cycles=pick("DETECT_CYCLES", ("dependencies", "detect_cycles"), _parse_bool, defaults.detect_cycles),
            uploads_prefix=pick("UPLOADS_PREFIX", ("evidence", "uploads_prefix"), str, defaults.uploads_prefix),
        )

    @classmethod
    def for_project(cls, project_dir: Path) -> "BoardSettings":
        config, err = load_board_config(project_dir)
        if err:
            logger.warning("Failed to load board config: %s", err)
        return cls.from_config(config)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordering": {"step": self.step, "base": self.base, "resolution": self.resolution},
            "dependencies": {"detect_cycles": self.detect_cycles},
            "evidence": {"uploads_prefix": self.uploads_prefix},
        }
