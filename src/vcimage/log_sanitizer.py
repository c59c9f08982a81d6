"""Log sanitization module for preventing secret leakage.

vCloud requests carry a session token in the x-vcloud-authorization header
and error bodies sometimes echo request headers back. Anything built from an
HTTP exchange goes through LogSanitizer before it is logged or raised.

Design Philosophy:
- Security first: err on side of over-redaction
- Pattern-based: not brittle keyword matching
"""

import re
from re import Pattern


class LogSanitizer:
    """Sanitize sensitive data from logs and error messages.

    All methods are class methods and can be called without instantiation.
    """

    REDACTED = "[REDACTED]"

    # Order matters: more specific patterns should come first
    SECRET_PATTERNS: dict[str, Pattern] = {
        "vcloud_authorization": re.compile(
            r"(x-vcloud-authorization[\"']?\s*[:=]\s*[\"']?)([^\s\"'&,\)]+)", re.IGNORECASE
        ),
        "authorization_header": re.compile(
            r"(Authorization[\"']?\s*[:=]\s*[\"']?(?:Basic|Bearer)\s+)([^\s\"']+)", re.IGNORECASE
        ),
        "password": re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE),
        "token_assignment": re.compile(
            r'([^a-zA-Z]token["\']?\s*[:=]\s*["\']?)([^\s"\'&,\)]+)', re.IGNORECASE
        ),
    }

    @classmethod
    def sanitize(cls, message: str) -> str:
        """Sanitize message by redacting sensitive patterns.

        Examples:
            >>> LogSanitizer.sanitize("x-vcloud-authorization: abc123")
            'x-vcloud-authorization: [REDACTED]'
        """
        if not isinstance(message, str):
            message = str(message)

        result = message
        for pattern in cls.SECRET_PATTERNS.values():
            result = pattern.sub(r"\1" + cls.REDACTED, result)
        return result

    @classmethod
    def truncate(cls, message: str, limit: int = 500) -> str:
        """Sanitize and shorten a message (e.g. an HTTP body) for logging."""
        result = cls.sanitize(message)
        if len(result) > limit:
            result = result[:limit] + "..."
        return result


__all__ = ["LogSanitizer"]
