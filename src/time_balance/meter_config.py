"""Loading of the default meter (or activity) catalog."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from .errors import ConfigurationError, TimeBalanceError
from .models import CatalogVariant, Meter
from .normalization import validate_name

logger = logging.getLogger(__name__)

DEFAULTS_DIR = Path(__file__).parent / "defaults"


class MeterConfigurationLoader(Protocol):
    def load_defaults(self) -> list[Meter]: ...


def packaged_defaults_path(variant: CatalogVariant) -> Path:
    return DEFAULTS_DIR / f"{variant.value}s.json"


class JsonMeterConfiguration:
    """Reads ``{"meters": [{"name", "factor"}]}`` or ``{"activities": [{"name"}]}``.

    ``override_path`` wins over the packaged file when it exists.
    """

    def __init__(
        self,
        variant: CatalogVariant = CatalogVariant.METER,
        override_path: Optional[Path] = None,
    ) -> None:
        self.variant = CatalogVariant(variant)
        self.override_path = Path(override_path) if override_path else None

    @property
    def source_path(self) -> Path:
        if self.override_path and self.override_path.exists():
            return self.override_path
        return packaged_defaults_path(self.variant)

    def load_defaults(self) -> list[Meter]:
        path = self.source_path
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Could not read default meters from {path}: {exc}") from exc

        section = f"{self.variant.value}s"
        items = data.get(section) if isinstance(data, dict) else None
        if not items:
            raise ConfigurationError(f"No {section} configured in {path.name}")

        meters: list[Meter] = []
        for position, item in enumerate(items):
            try:
                meters.append(
                    Meter(
                        name=validate_name(item.get("name")),
                        factor=self.variant.normalize_factor(item.get("factor")),
                        display_order=position,
                    )
                )
            except (AttributeError, TimeBalanceError) as exc:
                raise ConfigurationError(f"Invalid entry #{position + 1} in {path.name}: {exc}") from exc
        logger.info("Loaded %d default %s from %s", len(meters), section, path)
        return meters
