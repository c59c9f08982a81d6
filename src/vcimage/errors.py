"""Error types for vcimage.

Every failure surfaced to callers is a VCloudError. CloudError marks problems
reported by (or about) the remote platform; InternalError marks bugs in this
package, such as a refresh mutex that could not be created.

Public API:
    VCloudError: Base class for all vcimage errors
    CloudError: Platform-side failure (not found, HTTP error, error document)
    InternalError: Programming error inside vcimage
    DocumentParseError: Response document could not be parsed
    FilterError: Listing filter is malformed
"""

__all__ = ["CloudError", "DocumentParseError", "FilterError", "InternalError", "VCloudError"]


class VCloudError(Exception):
    """Base class for vcimage errors."""

    pass


class CloudError(VCloudError):
    """Raised when the cloud platform reports or causes a failure."""

    pass


class InternalError(VCloudError):
    """Raised when vcimage itself is in an inconsistent state."""

    pass


class DocumentParseError(CloudError):
    """Raised when a response document is not well-formed XML."""

    pass


class FilterError(VCloudError):
    """Raised when an image filter cannot be applied, such as a bad name pattern."""

    pass
