"""
Error taxonomy.

Only ``InvariantViolation`` is ever raised out of the public surface, and
only for impossible inputs. ``UpstreamUnavailable`` travels inside failed
fetch results and ``MalformedData`` is caught per payload unit; "no data"
is a scan status, not an exception.
"""

from typing import Optional


class OddsEdgeError(Exception):
    """Base class for all oddsedge errors."""


class UpstreamUnavailable(OddsEdgeError):
    """Network failure or non-success status from the price source."""

    def __init__(
        self,
        source_key: str,
        reason: str,
        status_code: Optional[int] = None,
    ):
        self.source_key = source_key
        self.reason = reason
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{source_key}: {reason}{status}")


class MalformedData(OddsEdgeError):
    """A fetched payload unit is missing fields the core needs."""

    def __init__(self, unit: str, detail: str):
        self.unit = unit
        self.detail = detail
        super().__init__(f"malformed {unit}: {detail}")


class InvariantViolation(OddsEdgeError, ValueError):
    """A computation received a value normalization should have made impossible."""
