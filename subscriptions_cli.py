# Track subscriptions from the terminal
# It will ask the user for:
# name
# price
# billing cycle (monthly / yearly)
# start date

from __future__ import annotations

import argparse

import pandas as pd

from subscription_store import (
    SubscriptionError,
    create_subscription,
    delete_subscription,
    ensure_schema,
    list_subscriptions,
    monthly_cost,
    monthly_equivalent,
    parse_subscription_id,
    seed_subscriptions,
)
from subscriptions_web_app import make_engine

COLUMNS = ["id", "name", "price", "cycle", "startDate", "active", "monthly"]


def subscriptions_frame(rows) -> pd.DataFrame:
    """One row per subscription plus its monthly-equivalent cost."""
    df = pd.DataFrame(list(rows), columns=COLUMNS[:-1])
    df["monthly"] = [
        round(monthly_equivalent(p, c), 2) for p, c in zip(df["price"], df["cycle"])
    ]
    df["startDate"] = df["startDate"].str.slice(0, 10)
    return df


def show_subscriptions(engine, rows=None):
    if rows is None:
        rows = list_subscriptions(engine)
    if not rows:
        print("No subscriptions yet :(")
        return
    print("\nAll Subscriptions:")
    print(subscriptions_frame(rows).to_string(index=False))


def show_summary(engine):
    rows = list_subscriptions(engine)
    show_subscriptions(engine, rows)
    print(f"\nMonthly total: {monthly_cost(rows):.2f}")

    # Split by cycle so yearly plans stand out
    if rows:
        df = subscriptions_frame(rows)
        by_cycle = df.groupby(df["cycle"].str.lower())["monthly"].sum().round(2)
        print(by_cycle.to_string())


def add_subscription(engine, name, price, cycle, start_date):
    created = create_subscription(engine, name, price, cycle, start_date)
    print(f"Added subscription: {created['name']} ({created['price']:.2f} {created['cycle']}) starting {start_date}")
    return created


def remove_subscription(engine, raw_id):
    deleted = delete_subscription(engine, parse_subscription_id(raw_id))
    print(f"Deleted subscription: {deleted['name']}")
    return deleted


def interactive(engine):
    # User input loop
    while True:
        print("\nChoose an input:")
        print("1. Add subscription")
        print("2. Show subscriptions")
        print("3. Monthly summary")
        print("4. Delete subscription")
        print("5. Quit")
        choice = input("> ")

        try:
            if choice == "1":
                name = input("Name: ")
                price = input("Price: ")
                cycle = input("Cycle (monthly/yearly): ") or "monthly"
                start_date = input("Start date (YYYY-MM-DD): ")
                add_subscription(engine, name, price, cycle, start_date)
            elif choice == "2":
                show_subscriptions(engine)
            elif choice == "3":
                show_summary(engine)
            elif choice == "4":
                remove_subscription(engine, input("Id: "))
            elif choice == "5":
                print("Goodbye :)")
                break
            else:
                print("Unknown command")
        except SubscriptionError as exc:
            print(f"Error: {exc.message}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Track subscriptions from the terminal.")
    parser.add_argument(
        "--database",
        help="SQLAlchemy database URL to use (defaults to DATABASE_URL or the bundled sqlite file).",
    )
    parser.add_argument("--seed", action="store_true", help="Insert a few demo subscriptions and exit.")
    parser.add_argument("--summary", action="store_true", help="Print the subscriptions and monthly total and exit.")
    args = parser.parse_args(argv)

    engine = make_engine(args.database)
    ensure_schema(engine)

    if args.seed:
        rows = seed_subscriptions(engine)
        print(f"Seeded {len(rows)} subscriptions.")
        return
    if args.summary:
        show_summary(engine)
        return
    interactive(engine)


if __name__ == "__main__":
    main()
