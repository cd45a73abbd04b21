"""Immutable vendor metadata shared by the fetch adapters and downloaders."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Tuple


@dataclass(frozen=True)
class MicrosoftSettings:
    surface_driver_page: str
    download_host_pattern: str


@dataclass(frozen=True)
class DellSettings:
    catalog_cab_url: str
    catalog_xml_name: str
    download_base_url: str


@dataclass(frozen=True)
class HPSettings:
    platform_list_url: str
    platform_list_xml_name: str
    reference_cab_url: str


@dataclass(frozen=True)
class LenovoSettings:
    product_search_url: str
    driver_catalog_url: str
    excluded_product_lines: Tuple[str, ...]


@dataclass(frozen=True)
class VendorConfig:
    user_agent: str
    request_headers: Mapping[str, str]
    microsoft: MicrosoftSettings
    dell: DellSettings
    hp: HPSettings
    lenovo: LenovoSettings
    shared_index_max_age: timedelta = timedelta(days=7)
    request_timeout: int = 60

    def headers(self) -> dict[str, str]:
        merged = {"User-Agent": self.user_agent}
        merged.update(self.request_headers)
        return merged


@dataclass(frozen=True)
class AcquisitionDefaults:
    throttle_limit: int
    digest_limit: int
    releases: Tuple[str, ...]
    versions: Tuple[str, ...]
    architectures: Tuple[str, ...]


@dataclass(frozen=True)
class ImmutableConfig:
    vendors: VendorConfig
    acquisition: AcquisitionDefaults
    log_file_name: str = "drivers.log"
    settings_file_name: str = "settings.json"


VENDOR_CONFIG = VendorConfig(
    user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120",
    request_headers={
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
    },
    microsoft=MicrosoftSettings(
        surface_driver_page="https://learn.microsoft.com/en-us/surface/manage-surface-driver-and-firmware-updates",
        download_host_pattern=r"https://download\.microsoft\.com/[^\"'\s<>]+?\.msi",
    ),
    dell=DellSettings(
        catalog_cab_url="https://downloads.dell.com/catalog/CatalogPC.cab",
        catalog_xml_name="CatalogPC.xml",
        download_base_url="https://downloads.dell.com",
    ),
    hp=HPSettings(
        platform_list_url="https://hpia.hpcloud.hp.com/ref/platformList.cab",
        platform_list_xml_name="platformList.xml",
        reference_cab_url="https://hpia.hpcloud.hp.com/ref/{system_id}/{system_id}_{arch}_{release}.0.{version}.cab",
    ),
    lenovo=LenovoSettings(
        product_search_url="https://pcsupport.lenovo.com/us/en/api/v4/mse/getproducts?productId={keyword}",
        driver_catalog_url="https://download.lenovo.com/cdrt/td/catalogv2.xml",
        excluded_product_lines=("ThinkSystem", "ThinkAgile", "ThinkServer"),
    ),
)

ACQUISITION_DEFAULTS = AcquisitionDefaults(
    throttle_limit=5,
    digest_limit=5,
    releases=("10", "11"),
    versions=("22H2", "23H2", "24H2", "25H2"),
    architectures=("x64", "arm64"),
)

IMMUTABLE_CONFIG = ImmutableConfig(
    vendors=VENDOR_CONFIG,
    acquisition=ACQUISITION_DEFAULTS,
)
