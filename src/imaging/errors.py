"""Exception hierarchy for the imaging pipeline."""


class ImagingError(Exception):
    """Base class for imaging pipeline errors."""


class ConnectorError(ImagingError):
    """A mail provider call failed (non-2xx, timeout or malformed payload)."""


class AuthenticationError(ConnectorError):
    """Exchanging stored credentials for an access token failed."""


class BarcodeDetectionError(ImagingError):
    """The barcode detection service could not scan a document."""


class StorageError(ImagingError):
    """Reading or writing the content store failed."""


class NotFoundError(ImagingError):
    """A referenced catalog row does not exist."""


class QueueConflictError(ImagingError):
    """An unindexed item was already resolved."""


class ReferentialIntegrityError(ImagingError):
    """A catalog row is still referenced and cannot be deleted."""
