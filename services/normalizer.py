"""Normalize raw vendor model records into canonical driver models."""
from __future__ import annotations

from typing import Iterable, Sequence

from driver_catalog.activity_log import LogCallback, null_log
from driver_catalog.constants import VENDOR_CONFIG
from services.driver_models import (
    DellRawModel,
    DriverModel,
    HPRawModel,
    LenovoRawModel,
    Make,
    MicrosoftRawModel,
    RawModel,
    split_model,
)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _resolve_base_and_id(display: str, explicit_id: str | None) -> tuple[str, str | None]:
    base, parsed_id = split_model(display)
    if explicit_id is None:
        return (base, parsed_id)
    if parsed_id is not None and parsed_id.lower() == explicit_id.lower():
        return (base, explicit_id)
    return (display.strip(), explicit_id)


def _normalize_microsoft(raw: MicrosoftRawModel, log: LogCallback) -> DriverModel | None:
    name = _clean(raw.name)
    if not name:
        log("[WARN] Skipping Microsoft model without a name.")
        return None
    return DriverModel(make=Make.MICROSOFT, base_name=name, link=_clean(raw.link))


def _normalize_dell(raw: DellRawModel, log: LogCallback) -> DriverModel | None:
    display = _clean(raw.model)
    if not display:
        log("[WARN] Skipping Dell model without a name.")
        return None
    base, identifier = _resolve_base_and_id(display, _clean(raw.system_id))
    return DriverModel(make=Make.DELL, base_name=base, identifier=identifier, cab_url=_clean(raw.cab_url))


def _normalize_hp(raw: HPRawModel, log: LogCallback) -> DriverModel | None:
    display = _clean(raw.model) or _clean(raw.product_name)
    if not display:
        log("[WARN] Skipping HP model without a name.")
        return None
    base, identifier = _resolve_base_and_id(display, _clean(raw.system_id))
    return DriverModel(make=Make.HP, base_name=base, identifier=identifier, product_name=_clean(raw.product_name))


def _normalize_lenovo(raw: LenovoRawModel, log: LogCallback) -> DriverModel | None:
    product = _clean(raw.product_name)
    machine_type = _clean(raw.machine_type)
    display = _clean(raw.model)
    if display and (product is None or machine_type is None):
        parsed_base, parsed_id = split_model(display)
        product = product or (parsed_base if parsed_id else None)
        machine_type = machine_type or parsed_id
    if not product or not machine_type:
        log(f"[WARN] Skipping Lenovo model '{display or product or machine_type or ''}': product name and machine type are both required.")
        return None
    return DriverModel(make=Make.LENOVO, base_name=product, identifier=machine_type, product_name=product)


def normalize(raw: RawModel, *, log: LogCallback | None = None) -> DriverModel | None:
    sink = log or null_log
    if isinstance(raw, MicrosoftRawModel):
        return _normalize_microsoft(raw, sink)
    if isinstance(raw, DellRawModel):
        return _normalize_dell(raw, sink)
    if isinstance(raw, HPRawModel):
        return _normalize_hp(raw, sink)
    if isinstance(raw, LenovoRawModel):
        return _normalize_lenovo(raw, sink)
    raise TypeError(f"Unsupported raw model type: {type(raw).__name__}")


def is_excluded_product_line(record: DriverModel, excluded: Sequence[str]) -> bool:
    if record.make is not Make.LENOVO:
        return False
    name = (record.product_name or record.base_name).lower()
    return any(name.startswith(line.lower()) for line in excluded)


def normalize_batch(
    raws: Iterable[RawModel],
    *,
    log: LogCallback | None = None,
    excluded_product_lines: Sequence[str] = VENDOR_CONFIG.lenovo.excluded_product_lines,
) -> list[DriverModel]:
    sink = log or null_log
    records: list[DriverModel] = []
    for raw in raws:
        record = normalize(raw, log=sink)
        if record is None:
            continue
        if is_excluded_product_line(record, excluded_product_lines):
            sink(f"Skipping {record.make.value} {record.model}: product line is not supported.")
            continue
        records.append(record)
    return records
