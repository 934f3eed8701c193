"""Tests for the storage handles and CouponStore operations."""

import json
import threading
from datetime import datetime

import pytest

from coupon_board.logic import to_iso
from coupon_board.models import CouponFilters, User
from coupon_board.storage import CouponStore, JsonFileStorage, MemoryStorage, StorageError
from tests.conftest import NOW, make_coupon


class TestCouponStore:
    def test_save_then_get_round_trip(self, store):
        coupon = make_coupon(code="PIZZA50", imageUrl="https://example.com/p.png")
        store.save(coupon)
        assert store.get_by_id(coupon.id) == coupon

    def test_get_missing(self, store):
        assert store.get_by_id("nope") is None

    def test_save_replaces_existing(self, store):
        store.save(make_coupon())
        store.save(make_coupon(title="Whole pizza free"))
        coupons = store.all()
        assert len(coupons) == 1
        assert coupons[0].title == "Whole pizza free"

    def test_delete(self, store):
        store.save(make_coupon(id="a"))
        store.save(make_coupon(id="b"))

        assert store.delete("missing") is False
        assert [c.id for c in store.all()] == ["a", "b"]

        assert store.delete("a") is True
        assert [c.id for c in store.all()] == ["b"]

    def test_claim(self, store):
        store.save(make_coupon())

        assert store.claim("coupon_1", "bob") is True
        claimed = store.get_by_id("coupon_1")
        assert claimed.status == "claimed"
        assert claimed.claimedBy == "bob"
        assert claimed.claimedAt == to_iso(NOW)

        assert store.claim("coupon_1", "carol") is False
        assert store.get_by_id("coupon_1") == claimed

    def test_claim_missing_or_expired(self, store):
        store.save(make_coupon(status="expired"))
        assert store.claim("coupon_1", "bob") is False
        assert store.claim("missing", "bob") is False
        assert store.get_by_id("coupon_1").status == "expired"

    def test_owner_can_claim_own_coupon(self, store):
        store.save(make_coupon())
        assert store.claim("coupon_1", "alice") is True

    def test_unclaim(self, store):
        store.save(make_coupon())
        assert store.unclaim("coupon_1") is False

        store.claim("coupon_1", "bob")
        assert store.unclaim("coupon_1") is True
        released = store.get_by_id("coupon_1")
        assert released.status == "available"
        assert released.claimedBy is None
        assert released.claimedAt is None

        assert store.unclaim("coupon_1") is False
        assert store.get_by_id("coupon_1") == released

    def test_sweep(self, store):
        store.save(make_coupon(id="stale", expiryDate="2026-01-01T00:00:00.000Z"))
        store.save(make_coupon(id="fresh"))

        assert store.sweep() == 1
        assert store.get_by_id("stale").status == "expired"
        assert store.get_by_id("fresh").status == "available"
        assert len(store.all()) == 2
        assert store.last_sweep_at == NOW

        assert store.sweep() == 0

    def test_sweep_clears_claim(self, store):
        store.save(make_coupon(expiryDate="2026-01-01"))
        store.claim("coupon_1", "bob")

        assert store.sweep() == 1
        expired = store.get_by_id("coupon_1")
        assert expired.status == "expired"
        assert expired.claimedBy is None
        assert expired.claimedAt is None

    def test_sweep_accepts_naive_now(self, store):
        store.save(make_coupon(expiryDate="2026-01-01T00:00:00.000Z"))
        assert store.sweep(now=datetime(2026, 1, 15, 12, 0, 0)) == 1
        assert store.get_by_id("coupon_1").status == "expired"

    def test_sweep_ignores_unparseable_expiry(self, store):
        store.save(make_coupon(expiryDate="whenever"))
        assert store.sweep() == 0

    def test_sweep_without_changes_does_not_write(self):
        class CountingStorage(MemoryStorage):
            writes = 0

            def save_coupons(self, coupons):
                CountingStorage.writes += 1
                super().save_coupons(coupons)

        storage = CountingStorage([make_coupon()])
        assert CouponStore(storage, clock=lambda: NOW).sweep() == 0
        assert CountingStorage.writes == 0

    def test_query_sorted_by_discount(self, store):
        store.save(make_coupon(id="ten", discountValue="10"))
        store.save(make_coupon(id="thirty", discountValue="30"))
        store.save(make_coupon(id="abc", discountValue="abc", discountType="other"))
        store.save(make_coupon(id="gone", discountValue="90", status="expired"))

        result = store.query(CouponFilters(status="available", sortBy="discount"))
        assert [c.id for c in result] == ["thirty", "ten", "abc"]

    def test_query_defaults(self, store):
        store.save(make_coupon(id="old", postedAt="2026-01-01T00:00:00.000Z"))
        store.save(make_coupon(id="new", postedAt="2026-01-14T00:00:00.000Z"))
        store.save(make_coupon(id="claimed", status="claimed", claimedBy="bob", claimedAt="2026-01-14"))
        assert [c.id for c in store.query()] == ["new", "old"]

    def test_stats(self, store):
        store.save(make_coupon(id="a"))
        store.save(make_coupon(id="b", category="Travel"))
        store.claim("b", "bob")

        stats = store.stats()
        assert stats.total == 2
        assert stats.available == 1
        assert stats.claimed == 1
        assert stats.expired == 0
        assert stats.categoryCounts == {"Food & Dining": 1, "Travel": 1}

    def test_concurrent_claims_are_not_lost(self, store):
        for i in range(20):
            store.save(make_coupon(id=f"c{i}"))

        threads = [threading.Thread(target=store.claim, args=(f"c{i}", "bob")) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.stats().claimed == 20


class TestJsonFileStorage:
    def test_initialises_empty_files(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "data")
        assert storage.load_coupons() == []
        assert storage.load_users() == []
        assert json.loads(storage.coupons_file.read_text()) == []
        assert json.loads(storage.users_file.read_text()) == []

    def test_writes_whole_collection(self, json_store):
        json_store.save(make_coupon(id="a"))
        json_store.save(make_coupon(id="b", code="SAVE"))

        records = json.loads(json_store.storage.coupons_file.read_text())
        assert [r["id"] for r in records] == ["a", "b"]
        assert records[1]["code"] == "SAVE"
        # unset optional fields are left out
        assert "code" not in records[0]
        assert "claimedBy" not in records[0]

    def test_no_temp_files_left_behind(self, json_store):
        json_store.save(make_coupon())
        json_store.sweep()
        leftovers = [p.name for p in json_store.storage.data_dir.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_state_survives_new_handle(self, tmp_path):
        first = CouponStore(JsonFileStorage(tmp_path), clock=lambda: NOW)
        first.save(make_coupon())
        first.claim("coupon_1", "bob")

        second = CouponStore(JsonFileStorage(tmp_path))
        assert second.get_by_id("coupon_1").claimedBy == "bob"

    def test_corrupt_file_raises(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.coupons_file.write_text("{not json")
        with pytest.raises(StorageError):
            storage.load_coupons()

    def test_non_array_raises(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.coupons_file.write_text('{"id": "x"}')
        with pytest.raises(StorageError):
            storage.load_coupons()

    def test_invalid_record_raises(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.coupons_file.write_text('[{"id": "x"}]')
        with pytest.raises(StorageError):
            storage.load_coupons()

    def test_users_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        user = User(id="u1", username="alice", joinedAt="2026-01-01T00:00:00.000Z", postedCoupons=["coupon_1"])
        storage.save_users([user])
        assert storage.load_users() == [user]
