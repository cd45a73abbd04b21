"""Export and import of the selected-driver catalog file."""
from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterable, Mapping

from driver_catalog.activity_log import LogCallback, null_log
from services.driver_models import DriverModel, Make, sort_records, split_model
from services.errors import ImportFormatError

IMPORTED_STATUS = "Imported"
MODELS_KEY = "Models"
NAME_FIELDS = ("Name", "BaseName", "Model")
ID_FIELDS = {
    Make.MICROSOFT: (),
    Make.DELL: ("SystemId",),
    Make.HP: ("SystemId",),
    Make.LENOVO: ("MachineType",),
}


@dataclass
class ImportResult:
    records: list[DriverModel]
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    messages: list[str] = field(default_factory=list)


def _export_entry(record: DriverModel) -> dict[str, str]:
    entry: dict[str, str | None]
    if record.make is Make.MICROSOFT:
        entry = {"Name": record.base_name, "Link": record.link}
    elif record.make is Make.DELL:
        entry = {"Name": record.base_name, "SystemId": record.identifier, "CabUrl": record.cab_url}
    elif record.make is Make.HP:
        entry = {"Name": record.base_name, "SystemId": record.identifier}
    else:
        entry = {"Name": record.base_name, "MachineType": record.identifier}
    return {key: value for key, value in entry.items() if value is not None}


def export_catalog(records: Iterable[DriverModel]) -> dict[str, dict[str, list[dict[str, str]]]]:
    grouped: dict[Make, list[DriverModel]] = {}
    for record in sort_records(r for r in records if r.is_selected):
        grouped.setdefault(record.make, []).append(record)
    catalog: dict[str, dict[str, list[dict[str, str]]]] = {}
    for make in Make:
        if make in grouped:
            catalog[make.value] = {MODELS_KEY: [_export_entry(record) for record in grouped[make]]}
    return catalog


def save_catalog(records: Iterable[DriverModel], path: Path | str) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(export_catalog(records), indent=2), encoding="utf-8")
    return target


def _text(entry: Mapping[str, Any], *names: str) -> str | None:
    for name in names:
        value = entry.get(name)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            cleaned = str(value).strip()
            if cleaned:
                return cleaned
    return None


def _vendor_entries(make: Make, block: Any) -> list[Any]:
    if isinstance(block, list):
        return block
    if isinstance(block, dict):
        models = block.get(MODELS_KEY)
        if isinstance(models, list):
            return models
        if isinstance(models, dict):
            return [models]
    raise ImportFormatError(f"{make.value} block has no '{MODELS_KEY}' list")


def entry_to_record(make: Make, entry: Any) -> DriverModel:
    if not isinstance(entry, dict):
        raise ImportFormatError(f"{make.value} entry is not an object: {entry!r}")
    name = _text(entry, *NAME_FIELDS)
    if not name:
        raise ImportFormatError(f"{make.value} entry has no name: {entry!r}")
    link = _text(entry, "Link")
    cab_url = _text(entry, "CabUrl")
    product_name = _text(entry, "ProductName")
    if make is Make.MICROSOFT:
        return DriverModel(make=make, base_name=name, link=link)
    explicit_id = _text(entry, *ID_FIELDS[make])
    base, parsed_id = split_model(name)
    if explicit_id is None:
        identifier = parsed_id
    elif parsed_id is not None and parsed_id.lower() == explicit_id.lower():
        identifier = explicit_id
    else:
        base, identifier = name, explicit_id
    if make is Make.LENOVO:
        if not identifier:
            raise ImportFormatError(f"Lenovo entry '{name}' has no machine type")
        return DriverModel(make=make, base_name=base, identifier=identifier, product_name=product_name or base)
    return DriverModel(
        make=make,
        base_name=base,
        identifier=identifier,
        product_name=product_name,
        cab_url=cab_url if make is Make.DELL else None,
    )


def _merge_existing(existing: DriverModel, incoming: DriverModel) -> DriverModel:
    return replace(
        existing,
        link=incoming.link or existing.link,
        cab_url=incoming.cab_url or existing.cab_url,
        product_name=incoming.product_name or existing.product_name,
        is_selected=True,
        download_status=IMPORTED_STATUS,
    )


def import_catalog(current: Iterable[DriverModel], data: Any, *, log: LogCallback | None = None) -> ImportResult:
    """Merge a parsed catalog into ``current`` and return a new, sorted list.

    Older catalog shapes are accepted: vendor blocks may be a bare list or
    carry a single ``Models`` object, and entries may hold the full display
    string in ``Name`` or ``Model`` instead of separate identifier fields.
    Bad vendor blocks and entries are skipped and reported, never fatal.
    """
    sink = log or null_log
    if not isinstance(data, dict):
        raise ImportFormatError("Catalog file must contain a JSON object keyed by vendor name")
    merged = [replace(record) for record in current]
    index = {record.key: pos for pos, record in enumerate(merged)}
    result = ImportResult(records=[])

    def _skip(message: str) -> None:
        result.skipped += 1
        result.messages.append(message)
        sink(f"[WARN] {message}")

    for vendor_name, block in data.items():
        try:
            make = Make.parse(str(vendor_name))
        except ValueError:
            _skip(f"Skipping unknown vendor '{vendor_name}' in catalog.")
            continue
        try:
            entries = _vendor_entries(make, block)
        except ImportFormatError as exc:
            _skip(f"Skipping vendor {make.value}: {exc}")
            continue
        for entry in entries:
            try:
                incoming = entry_to_record(make, entry)
            except ImportFormatError as exc:
                _skip(f"Skipping catalog entry: {exc}")
                continue
            pos = index.get(incoming.key)
            if pos is not None:
                merged[pos] = _merge_existing(merged[pos], incoming)
                result.updated += 1
                continue
            merged.append(replace(incoming, is_selected=True, download_status=IMPORTED_STATUS))
            index[incoming.key] = len(merged) - 1
            result.imported += 1
    result.records = sort_records(merged)
    sink(f"Catalog import: {result.imported} added, {result.updated} updated, {result.skipped} skipped.")
    return result


def load_catalog(current: Iterable[DriverModel], path: Path | str, *, log: LogCallback | None = None) -> ImportResult:
    source = Path(path)
    try:
        data = json.loads(source.read_text(encoding="utf-8-sig"))
    except OSError as exc:
        raise ImportFormatError(f"Unable to read catalog {source}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ImportFormatError(f"Catalog {source} is not valid JSON: {exc}") from exc
    return import_catalog(current, data, log=log)
