"""Error taxonomy for fetching, importing and acquiring drivers."""
from __future__ import annotations


class DriverCatalogError(RuntimeError):
    pass


class PreconditionError(DriverCatalogError):
    """A required selection (release, architecture, version) is missing."""


class SharedResourceError(DriverCatalogError):
    """The shared vendor catalog index could not be fetched or expanded."""


class ImportFormatError(DriverCatalogError):
    """A catalog file, vendor block or entry does not have the expected shape."""


class AcquisitionItemError(DriverCatalogError):
    """A single driver download failed; siblings are unaffected."""


class ManifestWriteError(DriverCatalogError):
    """The driver mapping manifest could not be read or rewritten."""


class VendorFetchError(DriverCatalogError):
    """A vendor model list could not be retrieved or parsed."""
