class TideServiceError(Exception):
    """Base exception for tide prediction errors."""

    kind = "internal_error"


class OutOfRegion(TideServiceError, ValueError):
    """Raised when coordinates fall outside the supported region."""

    kind = "out_of_region"

    def __init__(self, lat: float, lon: float, message: str = None):
        self.lat = lat
        self.lon = lon
        super().__init__(message or f"Coordinates ({lat}, {lon}) are outside the supported region")


class CorruptPayload(TideServiceError):
    """Raised when tile bytes cannot be inflated or fail sanity checks."""

    kind = "corrupt_payload"


class UpstreamUnavailable(TideServiceError):
    """Raised when the external tide API errors, times out or is not configured."""

    kind = "upstream_unavailable"


class InvalidRequest(TideServiceError, ValueError):
    """Raised when a request is missing required fields or is malformed."""

    kind = "invalid_request"
