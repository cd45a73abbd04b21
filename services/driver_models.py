"""Canonical driver model record and the per-vendor raw records it is built from."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

MODEL_PATTERN = re.compile(r"^(?P<base>.*?\S)\s*\((?P<id>[^()]+)\)\s*$")


class Make(str, Enum):
    MICROSOFT = "Microsoft"
    DELL = "Dell"
    HP = "HP"
    LENOVO = "Lenovo"

    @classmethod
    def parse(cls, value: str) -> "Make":
        cleaned = value.strip().lower()
        for make in cls:
            if make.value.lower() == cleaned:
                return make
        raise ValueError(f"Unknown make: {value}")


def format_model(base_name: str, identifier: str | None) -> str:
    base = base_name.strip()
    if identifier is None or not identifier.strip():
        return base
    return f"{base} ({identifier.strip()})"


def split_model(display: str) -> tuple[str, str | None]:
    text = display.strip()
    match = MODEL_PATTERN.match(text)
    if not match:
        return (text, None)
    return (match.group("base").strip(), match.group("id").strip())


@dataclass
class DriverModel:
    make: Make
    base_name: str
    identifier: str | None = None
    product_name: str | None = None
    link: str | None = None
    cab_url: str | None = None
    is_selected: bool = False
    download_status: str = ""

    @property
    def model(self) -> str:
        return format_model(self.base_name, self.identifier)

    @property
    def key(self) -> tuple[str, str]:
        return composite_key(self.make, self.model)

    @property
    def task_id(self) -> str:
        return key_text(self.key)


def composite_key(make: Make, model: str) -> tuple[str, str]:
    return (make.value.lower(), model.strip().lower())


def key_text(key: tuple[str, str]) -> str:
    return f"{key[0]}|{key[1]}"


def sort_records(records: Iterable[DriverModel]) -> list[DriverModel]:
    return sorted(records, key=lambda r: (not r.is_selected, r.make.value.lower(), r.model.lower()))


@dataclass(frozen=True)
class MicrosoftRawModel:
    name: str
    link: str | None = None


@dataclass(frozen=True)
class DellRawModel:
    model: str
    system_id: str | None = None
    cab_url: str | None = None


@dataclass(frozen=True)
class HPRawModel:
    model: str
    system_id: str | None = None
    product_name: str | None = None


@dataclass(frozen=True)
class LenovoRawModel:
    model: str | None = None
    product_name: str | None = None
    machine_type: str | None = None


RawModel = Union[MicrosoftRawModel, DellRawModel, HPRawModel, LenovoRawModel]
