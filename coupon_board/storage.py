import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from .logic import filter_coupons, sort_coupons, compute_stats, is_past_expiry, to_iso, utc_now
from .models import Coupon, CouponFilters, CouponStats, User

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The backing collections could not be read or written."""


def _dump(records) -> List[Dict[str, Any]]:
    return [r.model_dump(exclude_none=True) for r in records]


class MemoryStorage:
    """Keeps serialized collections in memory. Used by tests and throwaway runs."""

    def __init__(self, coupons: Optional[List[Coupon]] = None, users: Optional[List[User]] = None):
        self._coupons = _dump(coupons or [])
        self._users = _dump(users or [])

    def load_coupons(self) -> List[Coupon]:
        return [Coupon.model_validate(r) for r in self._coupons]

    def save_coupons(self, coupons: List[Coupon]) -> None:
        self._coupons = _dump(coupons)

    def load_users(self) -> List[User]:
        return [User.model_validate(r) for r in self._users]

    def save_users(self, users: List[User]) -> None:
        self._users = _dump(users)


class JsonFileStorage:
    """
    Two JSON array files, coupons.json and users.json, under `data_dir`.
    Each load reads a whole file and each save replaces a whole file.
    Missing files are created as empty arrays.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.coupons_file = self.data_dir / "coupons.json"
        self.users_file = self.data_dir / "users.json"

    def _ensure(self, path: Path) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                self._write(path, [])
        except OSError as e:
            logger.error(f"Could not initialise {path}: {e}")
            raise StorageError(f"Could not initialise {path.name}") from e

    def _read(self, path: Path) -> List[Dict[str, Any]]:
        self._ensure(path)
        try:
            with open(path, encoding="utf-8") as fh:
                records = json.load(fh)
        except OSError as e:
            logger.error(f"Could not read {path}: {e}")
            raise StorageError(f"Could not read {path.name}") from e
        except ValueError as e:
            logger.error(f"{path} is not valid JSON: {e}")
            raise StorageError(f"{path.name} is corrupt") from e
        if not isinstance(records, list):
            raise StorageError(f"{path.name} must hold a JSON array")
        return records

    def _write(self, path: Path, records: List[Dict[str, Any]]) -> None:
        # write to a sibling temp file and swap it in, so readers never see half a file
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(records, fh, indent=2)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error(f"Could not write {path}: {e}")
            raise StorageError(f"Could not write {path.name}") from e

    def load_coupons(self) -> List[Coupon]:
        records = self._read(self.coupons_file)
        try:
            return [Coupon.model_validate(r) for r in records]
        except ValueError as e:
            raise StorageError(f"{self.coupons_file.name} holds an invalid coupon") from e

    def save_coupons(self, coupons: List[Coupon]) -> None:
        self._ensure(self.coupons_file)
        self._write(self.coupons_file, _dump(coupons))

    def load_users(self) -> List[User]:
        records = self._read(self.users_file)
        try:
            return [User.model_validate(r) for r in records]
        except ValueError as e:
            raise StorageError(f"{self.users_file.name} holds an invalid user") from e

    def save_users(self, users: List[User]) -> None:
        self._ensure(self.users_file)
        self._write(self.users_file, _dump(users))


class CouponStore:
    """
    Coupon operations over a storage handle.

    Every call loads the full collection; mutations write the full collection
    back. All load-mutate-store sequences run under `lock`, which callers
    doing read-then-save (rating, edits) should hold as well.
    """

    def __init__(self, storage, clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.clock = clock
        self.lock = threading.RLock()
        self.last_sweep_at: Optional[datetime] = None

    def all(self) -> List[Coupon]:
        with self.lock:
            return self.storage.load_coupons()

    def query(self, filters: Optional[CouponFilters] = None) -> List[Coupon]:
        if filters is None:
            filters = CouponFilters()
        coupons = filter_coupons(self.all(), filters)
        return sort_coupons(coupons, filters.sortBy)

    def get_by_id(self, coupon_id: str) -> Optional[Coupon]:
        for coupon in self.all():
            if coupon.id == coupon_id:
                return coupon
        return None

    def save(self, coupon: Coupon) -> None:
        with self.lock:
            coupons = self.storage.load_coupons()
            for i, existing in enumerate(coupons):
                if existing.id == coupon.id:
                    coupons[i] = coupon
                    break
            else:
                coupons.append(coupon)
            self.storage.save_coupons(coupons)

    def delete(self, coupon_id: str) -> bool:
        with self.lock:
            coupons = self.storage.load_coupons()
            remaining = [c for c in coupons if c.id != coupon_id]
            if len(remaining) == len(coupons):
                return False
            self.storage.save_coupons(remaining)
        logger.info(f"Deleted coupon {coupon_id}")
        return True

    def claim(self, coupon_id: str, claimed_by: str) -> bool:
        with self.lock:
            coupon = self.get_by_id(coupon_id)
            if coupon is None or coupon.status != "available":
                return False
            self.save(
                coupon.model_copy(
                    update={
                        "status": "claimed",
                        "claimedBy": claimed_by,
                        "claimedAt": to_iso(self.clock()),
                    }
                )
            )
        logger.info(f"Coupon {coupon_id} claimed by {claimed_by}")
        return True

    def unclaim(self, coupon_id: str) -> bool:
        with self.lock:
            coupon = self.get_by_id(coupon_id)
            if coupon is None or coupon.status != "claimed":
                return False
            self.save(
                coupon.model_copy(update={"status": "available", "claimedBy": None, "claimedAt": None})
            )
        logger.info(f"Coupon {coupon_id} released")
        return True

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Mark every coupon whose expiry date has passed as expired. Returns how many changed."""
        if now is None:
            now = self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        expired = 0
        with self.lock:
            coupons = self.storage.load_coupons()
            for i, coupon in enumerate(coupons):
                if coupon.status != "expired" and is_past_expiry(coupon, now):
                    coupons[i] = coupon.model_copy(
                        update={"status": "expired", "claimedBy": None, "claimedAt": None}
                    )
                    expired += 1
            if expired:
                self.storage.save_coupons(coupons)
            self.last_sweep_at = now
        logger.info(f"Expiry sweep marked {expired} coupons as expired")
        return expired

    def stats(self) -> CouponStats:
        return compute_stats(self.all())
