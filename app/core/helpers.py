"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- UUID parsing (references that may or may not be internal ids)
- Pagination metadata
- Minor currency unit conversion

These utilities are pure infrastructure - they have no knowledge
of transactions, gateways, or business rules.

Usage:
    from core.helpers import calculate_pagination, parse_uuid, to_minor_units

    pk = parse_uuid(reference)  # None if reference is not a UUID
    pagination = calculate_pagination(total=42, page=2, per_page=10)
    kobo = to_minor_units(Decimal("5000.00"))  # 500000
"""

from __future__ import annotations

import math
import uuid
from decimal import ROUND_HALF_UP, Decimal


def parse_uuid(value: object) -> uuid.UUID | None:
    """
    Parse a value as a UUID.

    Args:
        value: String or UUID to parse

    Returns:
        The UUID, or None if the value is not a valid UUID

    Example:
        parse_uuid("550e8400-e29b-41d4-a716-446655440000")  # UUID(...)
        parse_uuid("PSK-1700000000-42")  # None
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """
    Convert a major-unit amount to the smallest currency unit.

    Gateways bill in kobo/cents; rounding is half-up to the nearest unit.

    Example:
        to_minor_units(Decimal("12.345"))  # 1235
    """
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int | str | None) -> Decimal | None:
    """Convert kobo/cents back to a two-decimal major-unit amount."""
    if amount is None:
        return None
    return (Decimal(str(amount)) / 100).quantize(Decimal("0.01"))


def calculate_pagination(total: int, page: int, per_page: int) -> dict:
    """
    Calculate pagination metadata.

    Args:
        total: Total number of items
        page: Current page number (1-indexed)
        per_page: Items per page

    Returns:
        Dict with pagination metadata

    Example:
        pagination = calculate_pagination(total=100, page=3, per_page=20)
        # {
        #     "total": 100,
        #     "page": 3,
        #     "per_page": 20,
        #     "total_pages": 5,
        #     "has_next": True,
        #     "has_previous": True,
        #     "next_page": 4,
        #     "previous_page": 2,
        #     "start_index": 41,
        #     "end_index": 60
        # }
    """
    total_pages = math.ceil(total / per_page) if per_page > 0 else 0
    page = max(1, min(page, total_pages or 1))

    has_next = page < total_pages
    has_previous = page > 1

    start_index = (page - 1) * per_page + 1 if total > 0 else 0
    end_index = min(page * per_page, total)

    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "has_next": has_next,
        "has_previous": has_previous,
        "next_page": page + 1 if has_next else None,
        "previous_page": page - 1 if has_previous else None,
        "start_index": start_index,
        "end_index": end_index,
    }
