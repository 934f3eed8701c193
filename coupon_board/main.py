import logging
import math
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union
from fastapi import Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .logic import apply_rating, generate_coupon_id, merge_updates, to_iso, utc_now, validate_coupon_data
from .models import BulkActionRequest, Coupon, CouponActionRequest, CouponFilters
from .storage import CouponStore, JsonFileStorage, StorageError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# ---------------------------
# Store wiring
# ---------------------------

@lru_cache
def get_store() -> CouponStore:
    return CouponStore(JsonFileStorage(settings.DATA_DIR))


def _dump(coupon: Coupon) -> Dict[str, Any]:
    return coupon.model_dump(exclude_none=True)


def _error(status_code: int, error: str, details: Optional[List[str]] = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _validation_messages(exc: Union[ValidationError, RequestValidationError]) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ---------------------------
# FastAPI App & Routes
# ---------------------------

app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.exception(f"Storage failure during {request.method} {request.url.path}")
    return _error(500, f"Storage unavailable: {exc}")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, "Validation failed", details=_validation_messages(exc))


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/coupons")
def list_coupons(
    search: Optional[str] = None,
    category: Optional[str] = None,
    store: Optional[str] = None,
    status: str = "available",
    sortBy: str = "newest",
    minDiscount: Optional[float] = None,
    maxDiscount: Optional[float] = None,
    stats: bool = False,
    coupon_store: CouponStore = Depends(get_store),
):
    if stats:
        return {"success": True, "data": coupon_store.stats().model_dump()}

    filters = CouponFilters(
        search=search or None,
        category=category or None,
        store=store or None,
        status=status or "available",
        sortBy=sortBy or "newest",
        minDiscount=minDiscount,
        maxDiscount=maxDiscount,
    )
    coupons = coupon_store.query(filters)
    return {"success": True, "data": [_dump(c) for c in coupons], "total": len(coupons)}


@app.post("/coupons", status_code=201)
def create_coupon(
    payload: Dict[str, Any] = Body(...),
    coupon_store: CouponStore = Depends(get_store),
):
    data = dict(payload)
    if not _optional_text(data.get("postedBy")):
        data["postedBy"] = settings.GUEST_USER

    errors = validate_coupon_data(data)
    if errors:
        return _error(400, "Validation failed", details=errors)

    coupon = Coupon(
        id=generate_coupon_id(),
        title=data["title"].strip(),
        store=data["store"].strip(),
        category=data["category"].strip(),
        discountValue=data["discountValue"].strip(),
        discountType=data["discountType"],
        expiryDate=data["expiryDate"].strip(),
        description=data["description"].strip(),
        code=_optional_text(data.get("code")),
        imageUrl=_optional_text(data.get("imageUrl")),
        postedBy=data["postedBy"].strip(),
        postedAt=to_iso(utc_now()),
        status="available",
        rating=0,
        ratingCount=0,
    )
    coupon_store.save(coupon)
    logger.info(f"Created coupon {coupon.id} for {coupon.store} by {coupon.postedBy}")

    return {"success": True, "data": _dump(coupon), "message": "Coupon created successfully"}


@app.put("/coupons")
def bulk_update(payload: BulkActionRequest, coupon_store: CouponStore = Depends(get_store)):
    if payload.action != "cleanup":
        return _error(400, "Invalid action")

    cleaned = coupon_store.sweep()
    return {
        "success": True,
        "message": f"Cleaned up {cleaned} expired coupons",
        "cleanedCount": cleaned,
    }


@app.get("/coupons/{coupon_id}")
def get_coupon(coupon_id: str, coupon_store: CouponStore = Depends(get_store)):
    coupon = coupon_store.get_by_id(coupon_id)
    if coupon is None:
        return _error(404, "Coupon not found")
    return {"success": True, "data": _dump(coupon)}


@app.put("/coupons/{coupon_id}")
def update_coupon(
    coupon_id: str,
    payload: CouponActionRequest,
    coupon_store: CouponStore = Depends(get_store),
):
    with coupon_store.lock:
        coupon = coupon_store.get_by_id(coupon_id)
        if coupon is None:
            return _error(404, "Coupon not found")

        if payload.action == "claim":
            if not payload.claimedBy:
                return _error(400, "claimedBy is required")
            if not coupon_store.claim(coupon_id, payload.claimedBy):
                return _error(400, "Coupon cannot be claimed")
            return {"success": True, "message": "Coupon claimed successfully"}

        if payload.action == "unclaim":
            if not coupon_store.unclaim(coupon_id):
                return _error(400, "Coupon cannot be unclaimed")
            return {"success": True, "message": "Coupon unclaimed successfully"}

        if payload.action == "rate":
            rating = payload.rating
            if rating is None or not math.isfinite(rating) or not payload.userId or not 1 <= rating <= 5:
                return _error(400, "Valid rating (1-5) and userId required")
            rated = apply_rating(coupon, rating)
            coupon_store.save(rated)
            logger.info(f"Coupon {coupon_id} rated {rating} by {payload.userId}")
            return {
                "success": True,
                "message": "Rating updated successfully",
                "data": {"rating": rated.rating, "ratingCount": rated.ratingCount},
            }

        if payload.action == "update":
            if not payload.updates:
                return _error(400, "Updates data required")
            try:
                updated = merge_updates(coupon, payload.updates)
            except ValidationError as e:
                return _error(400, "Validation failed", details=_validation_messages(e))
            coupon_store.save(updated)
            logger.info(f"Updated coupon {coupon_id}")
            return {"success": True, "message": "Coupon updated successfully", "data": _dump(updated)}

    return _error(400, "Invalid action")


@app.delete("/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, coupon_store: CouponStore = Depends(get_store)):
    if not coupon_store.delete(coupon_id):
        return _error(404, "Coupon not found")
    return {"success": True, "message": "Coupon deleted successfully"}


@app.post("/cleanup")
def run_cleanup(coupon_store: CouponStore = Depends(get_store)):
    cleaned = coupon_store.sweep()
    return {
        "success": True,
        "message": f"Successfully cleaned up {cleaned} expired coupons",
        "cleanedCount": cleaned,
    }


@app.get("/cleanup")
def cleanup_status(coupon_store: CouponStore = Depends(get_store)):
    last = coupon_store.last_sweep_at
    return {
        "success": True,
        "data": {
            # the sweep only runs when triggered through this API
            "lastCleanup": to_iso(last) if last else None,
            "autoCleanupEnabled": False,
            "cleanupInterval": None,
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "coupon_board.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
    )
