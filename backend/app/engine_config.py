"""Engine configuration loaded from engine.yaml.

Every section is optional; a missing file or section falls back to the
defaults in ``core.models.config``. Example::

    buffer:
      max_size: 300
      gap_threshold: 5
    gate:
      min_confidence: 0.95   # strict mode
      cooldown: 300
    scoring:
      weights: {indicators: 0.35, trend: 0.3, market: 0.2, patterns: 0.15}
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv

from core.models.config import EngineConfig

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent.parent / "engine.yaml"


def load_engine_config(path: Path | str | None = None) -> EngineConfig:
    """Load engine config from YAML file.

    Falls back to defaults if the file doesn't exist. Invalid values raise
    ``pydantic.ValidationError``.
    """
    config_path = Path(path) if path else _DEFAULT_PATH

    # Load .env next to the config so deployment overrides are visible
    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info("No engine config found at %s, using defaults", config_path)
        return EngineConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{config_path}: expected a mapping at the top level")

    config = EngineConfig(**raw)
    logger.info(
        "Loaded engine config: buffer=%d ticks, min_confidence=%.2f, cooldown=%.0fs, cache_ttl=%.0fs",
        config.buffer.max_size,
        config.gate.min_confidence,
        config.gate.cooldown,
        config.cache.ttl,
    )
    return config
