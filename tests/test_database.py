"""
Tests for database.py RelationalStore primitives

insert_ignore and upsert are single statements (ON CONFLICT), so a second
writer for the same key updates or skips instead of raising IntegrityError.
"""

from database import Profile, Subscription, store_transaction


class TestInsertIgnore:

    def test_second_insert_is_skipped(self, db):
        with store_transaction() as store:
            assert store.insert_ignore(Profile, {"user_id": "u-1", "points": 10}, ["user_id"])
            assert not store.insert_ignore(Profile, {"user_id": "u-1", "points": 99}, ["user_id"])
            assert store.select_one(Profile, Profile.user_id == "u-1").points == 10


class TestUpsert:

    def test_insert_then_update_keeps_one_row(self, db):
        with store_transaction() as store:
            first = store.upsert(Subscription, {"user_id": "u-2", "plan_id": "sub_basic"}, conflict_key="user_id")
            first_id = first.id

        with store_transaction() as store:
            second = store.upsert(
                Subscription,
                {"user_id": "u-2", "plan_id": "sub_pro", "status": "active"},
                conflict_key="user_id",
            )
            assert second.id == first_id
            assert second.plan_id == "sub_pro"

        with store_transaction() as store:
            rows = store.select(Subscription, Subscription.user_id == "u-2")
        assert len(rows) == 1
        assert rows[0].plan_id == "sub_pro"

    def test_same_transaction_sees_updated_row(self, db):
        with store_transaction() as store:
            store.upsert(Subscription, {"user_id": "u-3", "plan_id": "qr_basic"}, conflict_key="user_id")
            loaded = store.select_one(Subscription, Subscription.user_id == "u-3")
            assert loaded.plan_id == "qr_basic"
            updated = store.upsert(Subscription, {"user_id": "u-3", "plan_id": "qr_pro"}, conflict_key="user_id")
            assert updated.plan_id == "qr_pro"
