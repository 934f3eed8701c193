import math
import random
import re
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional
from .models import (
    COUPON_CATEGORIES,
    DISCOUNT_TYPES,
    Coupon,
    CouponFilters,
    CouponStats,
)


ALL = "all"

# leading numeric prefix, so "15%" reads as 15
_NUMBER_PREFIX = re.compile(r"^\s*[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# fields an edit may not touch; status and rating only move through their own operations
PROTECTED_FIELDS = (
    "id",
    "postedBy",
    "postedAt",
    "claimedBy",
    "claimedAt",
    "status",
    "rating",
    "ratingCount",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Render a timestamp the way browsers do (millisecond precision, ``Z`` suffix)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse ISO 8601 text into an aware datetime.
    Date-only and naive values are taken as UTC. Returns None when unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_discount(value: Optional[str]) -> float:
    if value is None:
        return 0.0
    match = _NUMBER_PREFIX.match(str(value))
    if not match:
        return 0.0
    return float(match.group(0))


def _is_set(value: Optional[str]) -> bool:
    return bool(value) and value != ALL


def matches_status(coupon: Coupon, status: Optional[str]) -> bool:
    if status == ALL:
        return True
    return coupon.status == (status or "available")


def matches_search(coupon: Coupon, search: Optional[str]) -> bool:
    if not search:
        return True
    term = search.lower()
    return (
        term in coupon.title.lower()
        or term in coupon.store.lower()
        or term in coupon.description.lower()
    )


def matches_category(coupon: Coupon, category: Optional[str]) -> bool:
    if not _is_set(category):
        return True
    return coupon.category == category


def matches_store(coupon: Coupon, store: Optional[str]) -> bool:
    if not _is_set(store):
        return True
    return store.lower() in coupon.store.lower()


def within_discount_range(
    coupon: Coupon, min_discount: Optional[float], max_discount: Optional[float]
) -> bool:
    if min_discount is None and max_discount is None:
        return True
    low = min_discount if min_discount is not None else 0.0
    high = max_discount if max_discount is not None else math.inf
    return low <= parse_discount(coupon.discountValue) <= high


def filter_coupons(coupons: Iterable[Coupon], filters: CouponFilters) -> List[Coupon]:
    return [
        c
        for c in coupons
        if matches_status(c, filters.status)
        and matches_search(c, filters.search)
        and matches_category(c, filters.category)
        and matches_store(c, filters.store)
        and within_discount_range(c, filters.minDiscount, filters.maxDiscount)
    ]


def _timestamp_key(value: str) -> datetime:
    return parse_timestamp(value) or _OLDEST


def sort_coupons(coupons: List[Coupon], sort_by: Optional[str]) -> List[Coupon]:
    if sort_by == "expiry":
        return sorted(coupons, key=lambda c: _timestamp_key(c.expiryDate))
    if sort_by == "discount":
        return sorted(coupons, key=lambda c: parse_discount(c.discountValue), reverse=True)
    if sort_by == "rating":
        return sorted(coupons, key=lambda c: c.rating, reverse=True)
    # "newest" and anything unrecognised
    return sorted(coupons, key=lambda c: _timestamp_key(c.postedAt), reverse=True)


def is_past_expiry(coupon: Coupon, now: datetime) -> bool:
    expiry = parse_timestamp(coupon.expiryDate)
    return expiry is not None and expiry < now


def compute_stats(coupons: Iterable[Coupon]) -> CouponStats:
    stats = CouponStats()
    for coupon in coupons:
        stats.total += 1
        if coupon.status == "available":
            stats.available += 1
        elif coupon.status == "claimed":
            stats.claimed += 1
        elif coupon.status == "expired":
            stats.expired += 1
        stats.categoryCounts[coupon.category] = stats.categoryCounts.get(coupon.category, 0) + 1
    return stats


def round_rating(value: float) -> float:
    # half-up to one decimal
    return math.floor(value * 10 + 0.5) / 10


def apply_rating(coupon: Coupon, rating: float) -> Coupon:
    """
    Fold one more rating into the running mean.
    The range of `rating` is the caller's concern.
    """
    count = coupon.ratingCount + 1
    average = (coupon.rating * coupon.ratingCount + rating) / count
    return coupon.model_copy(update={"rating": round_rating(average), "ratingCount": count})


def merge_updates(coupon: Coupon, updates: Mapping[str, Any]) -> Coupon:
    """
    Merge user supplied field updates into a coupon. PROTECTED_FIELDS keep
    their current values.

    Raises pydantic.ValidationError if the merged record is not a valid coupon.
    """
    merged: Dict[str, Any] = coupon.model_dump()
    merged.update(updates)
    for field in PROTECTED_FIELDS:
        merged[field] = getattr(coupon, field)
    return Coupon.model_validate(merged)


def generate_coupon_id() -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"coupon_{time.time_ns() // 1_000_000}_{suffix}"


def _text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return value.strip() if isinstance(value, str) else ""


def validate_coupon_data(data: Mapping[str, Any], now: Optional[datetime] = None) -> List[str]:
    if now is None:
        now = utc_now()
    errors: List[str] = []

    if len(_text(data, "title")) < 3:
        errors.append("Title must be at least 3 characters long")

    if len(_text(data, "store")) < 2:
        errors.append("Store name must be at least 2 characters long")

    category = _text(data, "category")
    if not category:
        errors.append("Category is required")
    elif category not in COUPON_CATEGORIES:
        errors.append("Category must be one of: " + ", ".join(COUPON_CATEGORIES))

    if not _text(data, "discountValue"):
        errors.append("Discount value is required")

    if data.get("discountType") not in DISCOUNT_TYPES:
        errors.append("Discount type must be one of: " + ", ".join(DISCOUNT_TYPES))

    expiry_text = _text(data, "expiryDate")
    if not expiry_text:
        errors.append("Expiry date is required")
    else:
        expiry = parse_timestamp(expiry_text)
        if expiry is None:
            errors.append("Expiry date must be a valid date")
        elif expiry <= now:
            errors.append("Expiry date must be in the future")

    if len(_text(data, "description")) < 10:
        errors.append("Description must be at least 10 characters long")

    if len(_text(data, "postedBy")) < 2:
        errors.append("Posted by field is required")

    return errors
