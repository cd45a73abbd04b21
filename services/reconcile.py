"""Selection-preserving merge of a fresh vendor fetch into the master list."""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from services.driver_models import DriverModel, sort_records


def reconcile(current: Iterable[DriverModel], batch: Iterable[DriverModel]) -> list[DriverModel]:
    """Return a new master list for ``batch`` that keeps every selected record.

    Selected records from any vendor are carried over first so that a freshly
    fetched, unselected duplicate can never shadow them.
    """
    merged: list[DriverModel] = []
    seen: set[tuple[str, str]] = set()
    for record in current:
        if not record.is_selected or record.key in seen:
            continue
        merged.append(replace(record))
        seen.add(record.key)
    for record in batch:
        if record.key in seen:
            continue
        merged.append(replace(record, is_selected=False))
        seen.add(record.key)
    return sort_records(merged)


def clear_records() -> list[DriverModel]:
    return []
