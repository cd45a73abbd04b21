"""HTTP and cabinet-expansion helpers shared by fetchers and downloaders."""
from __future__ import annotations

import os
import shutil
import subprocess
import urllib.error
import urllib.request
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from driver_catalog.constants import VENDOR_CONFIG


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(command, capture_output=True, text=True, check=False)


class HttpClient(Protocol):
    def get_text(self, url: str) -> str:  # pragma: no cover - protocol
        ...

    def download(self, url: str, destination: Path) -> Path:  # pragma: no cover - protocol
        ...


class UrllibHttpClient:
    def __init__(self, *, headers: Mapping[str, str] | None = None, timeout: int = VENDOR_CONFIG.request_timeout) -> None:
        self._headers = dict(headers) if headers is not None else VENDOR_CONFIG.headers()
        self._timeout = timeout

    def get_text(self, url: str) -> str:
        request = urllib.request.Request(url, headers=self._headers)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                return response.read().decode(charset, errors="ignore")
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Request failed for {url}: {exc}") from exc

    def download(self, url: str, destination: Path) -> Path:
        request = urllib.request.Request(url, headers=self._headers)
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_suffix(destination.suffix + ".download")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response, temp_path.open("wb") as handle:
                shutil.copyfileobj(response, handle)
            temp_path.replace(destination)
        except (urllib.error.URLError, OSError) as exc:
            if temp_path.exists():
                temp_path.unlink()
            raise RuntimeError(f"Download failed for {url}: {exc}") from exc
        return destination


def expand_cab(cab_path: Path, destination: Path, runner: CommandRunner) -> Path:
    destination.mkdir(parents=True, exist_ok=True)
    expand = "expand.exe" if os.name == "nt" else "cabextract"
    if os.name == "nt":
        command = [expand, str(cab_path), "-F:*", str(destination)]
    else:
        command = [expand, "-q", "-d", str(destination), str(cab_path)]
    result = runner.run(command)
    if result.returncode != 0:
        raise RuntimeError(f"Expanding {cab_path.name} failed: {result.stderr or result.stdout}")
    return destination
