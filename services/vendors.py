"""Vendor model-list fetchers producing typed raw records."""
from __future__ import annotations

import html
import json
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol
from urllib.parse import quote

from driver_catalog.activity_log import LogCallback, null_log
from driver_catalog.constants import VENDOR_CONFIG, VendorConfig
from services.driver_models import (
    DellRawModel,
    HPRawModel,
    LenovoRawModel,
    Make,
    MicrosoftRawModel,
    RawModel,
)
from services.errors import SharedResourceError, VendorFetchError
from services.prefetch import SharedIndexGuard
from services.transfer import CommandRunner, HttpClient, SubprocessRunner, expand_cab

SURFACE_LINK_PATTERN = re.compile(
    r"<a[^>]+href=\"(?P<href>https?://(?:www\.)?microsoft\.com/[^\"]*?download/details\.aspx\?id=\d+)\"[^>]*>(?P<name>.*?)</a>",
    re.IGNORECASE | re.DOTALL,
)
TAG_PATTERN = re.compile(r"<[^>]+>")
LENOVO_TYPE_SUFFIX = re.compile(r"\s*-\s*Type\s+(?P<type>[0-9A-Z]{4})\s*$", re.IGNORECASE)
LENOVO_TYPE_LIST = re.compile(r"\s*\(Type[^)]*\).*$", re.IGNORECASE)


@dataclass(frozen=True)
class FetchContext:
    keyword: str = ""
    release: str = ""
    version: str = ""
    arch: str = ""


class ModelSource(Protocol):
    def fetch(self, context: FetchContext) -> list[RawModel]:  # pragma: no cover - protocol
        ...


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if local_name(child.tag) == name:
            text = "".join(child.itertext()).strip()
            return text or None
    return None


class MicrosoftModelSource:
    def __init__(self, http: HttpClient, config: VendorConfig = VENDOR_CONFIG) -> None:
        self._http = http
        self._config = config

    def fetch(self, context: FetchContext) -> list[RawModel]:
        page = self._http.get_text(self._config.microsoft.surface_driver_page)
        models: list[RawModel] = []
        seen: set[str] = set()
        for match in SURFACE_LINK_PATTERN.finditer(page):
            name = html.unescape(TAG_PATTERN.sub("", match.group("name"))).strip()
            name = " ".join(name.split())
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            models.append(MicrosoftRawModel(name=name, link=html.unescape(match.group("href"))))
        return models


def iter_dell_systems(index_path: Path) -> Iterator[tuple[str, str]]:
    """Yield ``(display name, system id)`` for every model listed in the Dell index."""
    for _, element in ET.iterparse(str(index_path), events=("end",)):
        tag = local_name(element.tag)
        if tag == "SoftwareComponent":
            element.clear()
            continue
        if tag != "Brand":
            continue
        brand = _child_text(element, "Display") or ""
        for model in element:
            if local_name(model.tag) != "Model":
                continue
            system_id = (model.get("systemID") or "").strip()
            display = _child_text(model, "Display") or model.get("name") or ""
            name = f"{brand} {display}".strip() if display and not display.startswith(brand) else display
            if name and system_id:
                yield (name, system_id)
        element.clear()


class DellModelSource:
    def __init__(self, guard: SharedIndexGuard) -> None:
        self._guard = guard

    def fetch(self, context: FetchContext) -> list[RawModel]:
        index_path = self._guard.ensure_index()
        models: list[RawModel] = []
        seen: set[tuple[str, str]] = set()
        try:
            for name, system_id in iter_dell_systems(index_path):
                key = (name.lower(), system_id.lower())
                if key in seen:
                    continue
                seen.add(key)
                models.append(DellRawModel(model=name, system_id=system_id))
        except ET.ParseError as exc:
            raise VendorFetchError(f"Dell catalog index is not valid XML: {exc}") from exc
        return models


class HPModelSource:
    def __init__(
        self,
        http: HttpClient,
        work_dir: Path,
        *,
        command_runner: CommandRunner | None = None,
        config: VendorConfig = VENDOR_CONFIG,
    ) -> None:
        self._http = http
        self._work_dir = Path(work_dir)
        self._runner = command_runner or SubprocessRunner()
        self._config = config

    def fetch(self, context: FetchContext) -> list[RawModel]:
        settings = self._config.hp
        cab = self._http.download(settings.platform_list_url, self._work_dir / Path(settings.platform_list_url).name)
        expand_cab(cab, self._work_dir, self._runner)
        xml_path = self._work_dir / settings.platform_list_xml_name
        if not xml_path.exists():
            raise VendorFetchError(f"{settings.platform_list_xml_name} missing after expanding {cab.name}")
        try:
            root = ET.parse(str(xml_path)).getroot()
        except ET.ParseError as exc:
            raise VendorFetchError(f"HP platform list is not valid XML: {exc}") from exc
        models: list[RawModel] = []
        for platform in root.iter():
            if local_name(platform.tag) != "Platform":
                continue
            system_id = _child_text(platform, "SystemID")
            for child in platform:
                if local_name(child.tag) != "ProductName":
                    continue
                product = (child.text or "").strip()
                if product:
                    models.append(HPRawModel(model=product, system_id=system_id, product_name=product))
        return models


def parse_lenovo_products(payload: Any) -> list[LenovoRawModel]:
    items = payload.get("data", payload) if isinstance(payload, dict) else payload
    if isinstance(items, dict):
        items = [items]
    models: list[LenovoRawModel] = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        if "ProductName" in item or "MachineType" in item or "MachineTypes" in item:
            product = item.get("ProductName")
            types = item.get("MachineTypes") or item.get("MachineType") or ""
            if isinstance(types, str):
                types = [part.strip() for part in types.split(",")]
            for machine_type in types or [None]:
                models.append(LenovoRawModel(model=item.get("Model"), product_name=product, machine_type=machine_type or None))
            continue
        name = str(item.get("Name") or "").strip()
        item_type = str(item.get("Type") or "")
        if not name or not item_type.endswith("MachineType"):
            continue
        suffix = LENOVO_TYPE_SUFFIX.search(name)
        machine_type = suffix.group("type").upper() if suffix else str(item.get("Id", "")).rsplit("/", 1)[-1].upper()
        product = LENOVO_TYPE_LIST.sub("", LENOVO_TYPE_SUFFIX.sub("", name)).strip()
        models.append(LenovoRawModel(model=name, product_name=product or None, machine_type=machine_type or None))
    return models


class LenovoModelSource:
    def __init__(self, http: HttpClient, config: VendorConfig = VENDOR_CONFIG) -> None:
        self._http = http
        self._config = config

    def fetch(self, context: FetchContext) -> list[RawModel]:
        keyword = context.keyword.strip()
        if not keyword:
            raise ValueError("Enter a Lenovo model or machine type to search for.")
        url = self._config.lenovo.product_search_url.format(keyword=quote(keyword))
        text = self._http.get_text(url)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise VendorFetchError(f"Lenovo product search returned invalid JSON: {exc}") from exc
        return list(parse_lenovo_products(payload))


class VendorCatalogClient:
    def __init__(self, sources: Mapping[Make, ModelSource], *, log: LogCallback | None = None) -> None:
        self._sources = dict(sources)
        self._log = log or null_log

    def fetch_model_list(self, make: Make, context: FetchContext) -> list[RawModel]:
        source = self._sources.get(make)
        if source is None:
            raise VendorFetchError(f"No model source registered for {make.value}")
        self._log(f"Fetching {make.value} model list...")
        try:
            models = source.fetch(context)
        except (VendorFetchError, SharedResourceError, ValueError):
            raise
        except Exception as exc:
            raise VendorFetchError(f"{make.value} model list fetch failed: {exc}") from exc
        self._log(f"{make.value} returned {len(models)} raw model(s).")
        return models


def default_catalog_client(
    http: HttpClient,
    guard: SharedIndexGuard,
    work_dir: Path,
    *,
    command_runner: CommandRunner | None = None,
    config: VendorConfig = VENDOR_CONFIG,
    log: LogCallback | None = None,
) -> VendorCatalogClient:
    sources: dict[Make, ModelSource] = {
        Make.MICROSOFT: MicrosoftModelSource(http, config),
        Make.DELL: DellModelSource(guard),
        Make.HP: HPModelSource(http, Path(work_dir) / "HP", command_runner=command_runner, config=config),
        Make.LENOVO: LenovoModelSource(http, config),
    }
    return VendorCatalogClient(sources, log=log)
