import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from subscription_store import (
    TABLE_SUB,
    InvalidIdError,
    NotFoundError,
    SubscriptionPatch,
    ValidationError,
    cost_class,
    create_subscription,
    delete_subscription,
    ensure_schema,
    list_subscriptions,
    monthly_cost,
    parse_subscription_id,
    seed_subscriptions,
    update_subscription,
)


class SubscriptionStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        ensure_schema(self.engine)

    def test_create_stores_coerced_values(self):
        row = create_subscription(self.engine, "Gym", "20.5", "Monthly", "2024-05-03")
        self.assertEqual(row["price"], 20.5)
        self.assertEqual(row["name"], "Gym")
        self.assertEqual(row["cycle"], "Monthly")
        self.assertEqual(row["startDate"], "2024-05-03T00:00:00")
        self.assertTrue(row["active"])

    def test_create_accepts_utc_datetime_start(self):
        row = create_subscription(self.engine, "Gym", 1, "monthly", "2024-05-03T00:00:00.000Z")
        self.assertEqual(row["startDate"], "2024-05-03T00:00:00")

    def test_create_rejects_falsy_fields(self):
        cases = [
            ("", 1, "monthly", "2024-01-01"),
            ("Gym", None, "monthly", "2024-01-01"),
            ("Gym", 0, "monthly", "2024-01-01"),
            ("Gym", 1, "", "2024-01-01"),
            ("Gym", 1, "monthly", ""),
        ]
        for args in cases:
            with self.assertRaises(ValidationError, msg=args):
                create_subscription(self.engine, *args)
        self.assertEqual(list_subscriptions(self.engine), [])

    def test_create_rejects_bad_price(self):
        for price in ("abc", -3, True, "nan"):
            with self.assertRaises(ValidationError, msg=price):
                create_subscription(self.engine, "Gym", price, "monthly", "2024-01-01")

    def test_patch_from_json_keeps_typed_fields_only(self):
        patch = SubscriptionPatch.from_json(
            {"name": "X", "cycle": 3, "active": 1, "startDate": "2024-02-02", "extra": True}
        )
        self.assertEqual(patch.changes(), {"name": "X", "start_date": "2024-02-02T00:00:00"})
        self.assertTrue(SubscriptionPatch.from_json({}).is_empty())
        self.assertTrue(SubscriptionPatch.from_json(["price", 5]).is_empty())
        self.assertTrue(SubscriptionPatch.from_json({"name": "", "cycle": "  "}).is_empty())

    def test_patch_allows_false_and_zero(self):
        patch = SubscriptionPatch.from_json({"active": False, "price": 0})
        self.assertEqual(patch.changes(), {"price": 0.0, "active": 0})

    def test_update_empty_patch_is_validation_error(self):
        with self.assertRaises(ValidationError):
            update_subscription(self.engine, 1, SubscriptionPatch())

    def test_update_unknown_id(self):
        with self.assertRaises(NotFoundError):
            update_subscription(self.engine, 42, SubscriptionPatch(price=5.0))

    def test_update_single_field(self):
        row = create_subscription(self.engine, "Gym", 20, "monthly", "2024-01-01")
        updated = update_subscription(self.engine, row["id"], SubscriptionPatch(price=5.0))
        self.assertEqual(updated, {**row, "price": 5.0})

    def test_delete_unknown_id_leaves_table(self):
        create_subscription(self.engine, "Gym", 20, "monthly", "2024-01-01")
        with self.assertRaises(NotFoundError):
            delete_subscription(self.engine, 999)
        self.assertEqual(len(list_subscriptions(self.engine)), 1)

    def test_list_orders_by_created_at_desc(self):
        with self.engine.begin() as conn:
            for name, created in (("old", "2020-01-01T00:00:00"), ("new", "2022-01-01T00:00:00"), ("mid", "2021-01-01T00:00:00")):
                conn.execute(
                    text(f"""
                        INSERT INTO {TABLE_SUB} (name, price, cycle, start_date, active, created_at)
                        VALUES (:n, 1, 'monthly', '2020-01-01T00:00:00', 1, :c)
                    """),
                    {"n": name, "c": created},
                )
        self.assertEqual([r["name"] for r in list_subscriptions(self.engine)], ["new", "mid", "old"])

    def test_created_at_is_utc_and_survives_local_clock_rollback(self):
        # 01:50 EDT, then 01:30 EST forty minutes later
        instants = [
            datetime(2026, 11, 1, 5, 50, tzinfo=timezone.utc),
            datetime(2026, 11, 1, 6, 30, tzinfo=timezone.utc),
        ]

        class RollbackClock(datetime):
            @classmethod
            def now(cls, tz=None):
                instant = instants.pop(0)
                if tz is None:
                    offset = timedelta(hours=4 if instant.hour < 6 else 5)
                    return (instant - offset).replace(tzinfo=None)
                return instant.astimezone(tz)

        with mock.patch("subscription_store.datetime", RollbackClock):
            first = create_subscription(self.engine, "Before", 1, "monthly", "2026-01-01")
            second = create_subscription(self.engine, "After", 1, "monthly", "2026-01-01")

        self.assertEqual(first["createdAt"], "2026-11-01T05:50:00.000000+00:00")
        self.assertEqual(second["createdAt"], "2026-11-01T06:30:00.000000+00:00")
        self.assertEqual([r["name"] for r in list_subscriptions(self.engine)], ["After", "Before"])

    def test_seed_inserts_demo_rows(self):
        seed_subscriptions(self.engine)
        names = sorted(r["name"] for r in list_subscriptions(self.engine))
        self.assertEqual(names, ["Netflix", "Spotify", "iCloud"])


class SubscriptionIdTests(unittest.TestCase):
    def test_valid_ids(self):
        self.assertEqual(parse_subscription_id("7"), 7)
        self.assertEqual(parse_subscription_id(" 12 "), 12)
        self.assertEqual(parse_subscription_id("9007199254740993"), 9007199254740993)
        self.assertEqual(parse_subscription_id(str(2**63 - 1)), 2**63 - 1)

    def test_invalid_ids(self):
        for raw in ("", "abc", "0", "-1", "1.5", "1e3", "nan", "inf", None, str(2**63), "99999999999999999999"):
            with self.assertRaises(InvalidIdError, msg=raw):
                parse_subscription_id(raw)


class MonthlyCostTests(unittest.TestCase):
    def test_yearly_is_divided_by_twelve(self):
        subs = [{"price": 12, "cycle": "yearly"}, {"price": 10, "cycle": "monthly"}]
        self.assertAlmostEqual(monthly_cost(subs), 11.0)

    def test_cycle_is_case_insensitive(self):
        self.assertAlmostEqual(monthly_cost([{"price": 24, "cycle": "YEARLY"}]), 2.0)

    def test_unknown_cycle_counts_as_monthly(self):
        self.assertAlmostEqual(monthly_cost([{"price": 7, "cycle": "weekly"}]), 7.0)

    def test_empty_list(self):
        self.assertEqual(monthly_cost([]), 0)

    def test_cost_class_threshold(self):
        self.assertEqual(cost_class(100), "normal")
        self.assertEqual(cost_class(100.01), "high")


if __name__ == "__main__":
    unittest.main()
