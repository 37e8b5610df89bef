"""Exceptions raised by the CZ Spot Prices price engine."""

from __future__ import annotations


class SpotPriceError(Exception):
    """Base class for price engine errors."""


class InvalidPriceData(SpotPriceError):
    """Price set is malformed: wrong length, bad hour or non-numeric price."""


class InvalidHour(SpotPriceError):
    """Hour is outside 0-23."""


class InvalidPrice(SpotPriceError):
    """Price is not a finite number."""


class LockContention(SpotPriceError):
    """Another operation holds the recompute lock for this resource."""

    def __init__(self, resource_id: str, operation_id: str) -> None:
        """Initialize with the contended resource and the refused operation."""
        super().__init__(
            f"Recompute lock for {resource_id} is held, {operation_id} aborted"
        )
        self.resource_id = resource_id
        self.operation_id = operation_id


class UnsupportedDayLength(InvalidPriceData):
    """Local day does not have 24 hours (spring-forward DST transition)."""
