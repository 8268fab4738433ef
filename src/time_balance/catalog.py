"""Ordered, capacity-limited collection of configurable meters."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional, Sequence
from uuid import UUID

from .config import AccountSettings
from .errors import CapacityError, ConflictError, NotFoundError
from .models import Meter, MeterEvent
from .normalization import validate_name

logger = logging.getLogger(__name__)


def originates_from(event: Optional[MeterEvent], meter: Meter) -> bool:
    """Return True when ``event`` was started from ``meter``."""
    if event is None:
        return False
    if event.meter_id is not None:
        return event.meter_id == meter.id
    # Events stored before meter ids were recorded.
    return event.meter_name == meter.name and event.factor == meter.factor


class MeterCatalog:
    """Enforces naming, factor and capacity rules over a list of meters.

    The catalog works on the list it is given, so the owning account always
    sees the current state without copying.
    """

    def __init__(self, meters: list[Meter], settings: AccountSettings) -> None:
        self._meters = meters
        self.settings = settings

    def __iter__(self) -> Iterator[Meter]:
        return iter(self._meters)

    def __len__(self) -> int:
        return len(self._meters)

    def ids(self) -> set[UUID]:
        return {meter.id for meter in self._meters}

    def ordered(self) -> list[Meter]:
        return sorted(self._meters, key=lambda meter: meter.display_order)

    def find(self, meter_id: UUID) -> Optional[Meter]:
        return next((meter for meter in self._meters if meter.id == meter_id), None)

    def get(self, meter_id: UUID) -> Meter:
        meter = self.find(meter_id)
        if meter is None:
            raise NotFoundError(f"No meter found for id={meter_id}")
        return meter

    def nth(self, position: int) -> Optional[Meter]:
        """Return the meter at 1-based ``position`` by display order."""
        ordered = self.ordered()
        if 1 <= position <= len(ordered):
            return ordered[position - 1]
        return None

    def add(self, name: str, factor: Optional[float] = None) -> Meter:
        if len(self._meters) >= self.settings.max_meters:
            raise CapacityError(f"Cannot add more than {self.settings.max_meters} meters.")
        clean_name = validate_name(name, self.settings.max_name_length)
        meter = Meter(
            name=clean_name,
            factor=self.settings.variant.normalize_factor(factor),
            display_order=max((m.display_order for m in self._meters), default=-1) + 1,
        )
        self._meters.append(meter)
        logger.debug("Added meter %s (factor=%s)", meter.name, meter.factor)
        return meter

    def rename(
        self, meter_id: UUID, new_name: str, active_event: Optional[MeterEvent] = None
    ) -> Meter:
        clean_name = validate_name(new_name, self.settings.max_name_length)
        meter = self.get(meter_id)
        matched = originates_from(active_event, meter)
        meter.name = clean_name
        if matched and active_event is not None:
            active_event.meter_name = clean_name
        return meter

    def remove(self, meter_id: UUID, active_event: Optional[MeterEvent] = None) -> Meter:
        meter = self.get(meter_id)
        if originates_from(active_event, meter):
            raise ConflictError(f"Cannot delete the currently active meter '{meter.name}'.")
        self._meters.remove(meter)
        return meter

    def reorder(self, ordered_ids: Sequence[UUID]) -> bool:
        """Rewrite display order; ignored unless ``ordered_ids`` is a permutation."""
        ids = list(ordered_ids or [])
        if len(ids) != len(self._meters) or set(ids) != self.ids():
            logger.debug("Ignoring reorder request that does not match the catalog.")
            return False
        by_id = {meter.id: meter for meter in self._meters}
        reordered = [by_id[meter_id] for meter_id in ids]
        for position, meter in enumerate(reordered):
            meter.display_order = position
        self._meters[:] = reordered
        return True

    def replace(self, meters: Iterable[Meter]) -> None:
        self._meters[:] = list(meters)
        self.normalize()

    def normalize(self) -> None:
        """Apply the factor policy and the capacity cap to loaded meters."""
        variant = self.settings.variant
        for meter in self._meters:
            meter.factor = variant.normalize_factor(meter.factor)
        self.enforce_capacity()

    def enforce_capacity(self) -> None:
        limit = self.settings.max_meters
        if len(self._meters) > limit:
            logger.warning(
                "Catalog holds %d meters; keeping the first %d by display order.",
                len(self._meters),
                limit,
            )
            self._meters[:] = self.ordered()[:limit]
