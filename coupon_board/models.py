from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


CouponStatus = Literal["available", "claimed", "expired"]
DiscountType = Literal["percentage", "fixed", "other"]

COUPON_CATEGORIES = (
    "Food & Dining",
    "Shopping",
    "Entertainment",
    "Travel",
    "Electronics",
    "Fashion",
    "Health & Beauty",
    "Sports & Fitness",
    "Home & Garden",
    "Education",
    "Other",
)

DISCOUNT_TYPES = ("percentage", "fixed", "other")


class Coupon(BaseModel):
    id: str
    title: str
    store: str
    category: str
    discountValue: str  # free text, e.g. "20", "15%", "BOGO"
    discountType: DiscountType
    expiryDate: str  # ISO 8601
    description: str
    code: Optional[str] = None
    imageUrl: Optional[str] = None

    postedBy: str
    postedAt: str  # ISO 8601

    # only set while status == "claimed"
    claimedBy: Optional[str] = None
    claimedAt: Optional[str] = None

    status: CouponStatus = "available"
    rating: float = 0
    ratingCount: int = 0


class User(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    joinedAt: str
    postedCoupons: List[str] = Field(default_factory=list)
    claimedCoupons: List[str] = Field(default_factory=list)
    rating: float = 0


class CouponFilters(BaseModel):
    search: Optional[str] = None
    category: Optional[str] = None
    store: Optional[str] = None
    # "available" | "claimed" | "expired" | "all"
    status: Optional[str] = "available"
    # "newest" | "expiry" | "discount" | "rating", anything else sorts as newest
    sortBy: Optional[str] = "newest"
    minDiscount: Optional[float] = None
    maxDiscount: Optional[float] = None


class CouponStats(BaseModel):
    total: int = 0
    available: int = 0
    claimed: int = 0
    expired: int = 0
    categoryCounts: Dict[str, int] = Field(default_factory=dict)


class CouponActionRequest(BaseModel):
    action: Optional[str] = None  # "claim" | "unclaim" | "rate" | "update"
    claimedBy: Optional[str] = None
    rating: Optional[float] = None
    userId: Optional[str] = None
    updates: Optional[Dict[str, Any]] = None


class BulkActionRequest(BaseModel):
    action: Optional[str] = None  # "cleanup"
