#!/usr/bin/env python3
"""
Home Kitchen Orders

Database setup, demo data and a terminal kitchen board.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from config import DATABASE_PATH, POLL_INTERVAL_SECONDS
from db import init_database, get_table_counts, get_connection
from generators import CustomerGenerator, OrderGenerator
from services import OrderStore, OrderFeed, HttpOrderSource, KitchenError
from services.projections import kitchen_board


def generate_data(store: OrderStore, num_customers: int, num_orders: int, seed: int = 42):
    """Create demo customers and place orders for them"""
    if num_customers:
        print(f"👥 Generating {num_customers} customers...")
        customer_gen = CustomerGenerator(store, seed)
        customer_gen.save_to_db(customer_gen.generate_batch(num_customers))

    if num_orders:
        print(f"📝 Placing {num_orders} orders...")
        order_gen = OrderGenerator(store, seed)
        orders = order_gen.generate_batch(num_orders)
        total = sum(o.total for o in orders)
        print(f"   {orders[0].order_number} .. {orders[-1].order_number} (${total:,.2f})")

    print("\n✅ Data generation complete!")


def export_to_csv():
    """Export orders and their line items to CSV files"""
    import pandas as pd

    export_dir = Path(__file__).parent / "exports"
    export_dir.mkdir(exist_ok=True)

    conn = get_connection()

    print("\n📁 Exporting to CSV...")
    for table in ["orders", "order_items", "order_status_history", "profiles", "menu_items"]:
        df = pd.read_sql_query(f"SELECT * FROM {table}", conn)
        output_path = export_dir / f"{table}.csv"
        df.to_csv(output_path, index=False)
        print(f"   - {output_path} ({len(df)} rows)")

    # One row per order with its item count and status timeline
    summary = pd.read_sql_query(
        """
        SELECT o.order_number, o.user_name, o.status, o.total, o.created_at, o.delivered_at,
               SUM(i.qty) AS items
        FROM orders o JOIN order_items i ON i.order_id = o.id
        GROUP BY o.id
        ORDER BY o.order_seq
        """,
        conn,
    )
    output_path = export_dir / "order_summary.csv"
    summary.to_csv(output_path, index=False)
    print(f"   - {output_path} ({len(summary)} rows)")

    conn.close()
    print("\n✅ Export complete!")


def show_stats():
    """Display current database statistics"""
    counts = get_table_counts()

    print("\n📈 Database Statistics:")
    print("-" * 30)
    for table, count in counts.items():
        print(f"   {table:22} {count:>6,} rows")
    print("-" * 30)
    print(f"   {'Total':22} {sum(counts.values()):>6,} rows")
    print(f"\n   Database: {DATABASE_PATH}")


def print_board(board: dict):
    stats = board["stats"]
    print("\033[2J\033[H", end="")
    print(f"🥟 Kitchen board   pending {stats['pending_count']}   "
          f"in progress {stats['active_count']}   "
          f"delivered {stats['completed_count']} (${stats['total_sales']:,.2f}, avg ${stats['avg_order_value']:.2f})")
    for column in ["pending", "active", "delivering", "completed"]:
        cards = board[column]
        print(f"\n{column.upper()} ({len(cards)})")
        for card in cards[:10]:
            actions = " / ".join(a["label"] for a in card["actions"])
            driver = " 📍" if card["driver"] else ""
            print(f"   {card['order_number']:10} {card['label']:18} {card['customer'][:20]:20} "
                  f"${card['total']:>7.2f}{driver}  {actions}")


async def watch(base_url: str, interval: float | None = None):
    """
    Keep a kitchen board in sync with a running API by polling it.

    Without an explicit interval the board polls at the cadence the server
    advertises (PATCH /services/config), falling back to the local default.
    """
    source = HttpOrderSource(base_url)
    if interval is None:
        interval = await source.poll_interval() or POLL_INTERVAL_SECONDS
    feed = OrderFeed(source.fetch, poll_interval=interval)
    feed.on_change(lambda state: print_board(kitchen_board(state.all())))
    async with feed:
        if not feed.state.last_synced_at:
            print(f"⏳ Waiting for {base_url} ...")
        while True:
            await asyncio.sleep(3600)


def main():
    parser = argparse.ArgumentParser(
        description="Home kitchen order service tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --seed-menu                  # Create the DB and seed the menu
  python main.py --customers 20 --orders 50   # Demo customers and orders
  python main.py --reset --seed-menu          # Start over
  python main.py --close                      # Stop accepting orders
  python main.py --export                     # Export tables to CSV
  python main.py --stats                      # Show database statistics
  python main.py --watch http://localhost:8000  # Live kitchen board
        """
    )

    parser.add_argument("--reset", "-r", action="store_true", help="Reset database first")
    parser.add_argument("--seed-menu", action="store_true", help="Insert the default menu")
    parser.add_argument("--customers", "-c", type=int, default=0, help="Number of customers to generate")
    parser.add_argument("--orders", "-n", type=int, default=0, help="Number of orders to place")
    parser.add_argument("--seed", "-s", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--export", "-e", action="store_true", help="Export tables to CSV files")
    parser.add_argument("--stats", action="store_true", help="Show database statistics")
    parser.add_argument("--watch", metavar="URL", help="Show a live kitchen board for a running API")
    parser.add_argument("--interval", type=float, default=None,
                        help="Board refresh interval in seconds (default: the server's poll interval)")

    toggle = parser.add_mutually_exclusive_group()
    toggle.add_argument("--open", action="store_true", help="Start accepting orders")
    toggle.add_argument("--close", action="store_true", help="Stop accepting orders")

    args = parser.parse_args()

    if args.watch:
        try:
            asyncio.run(watch(args.watch, args.interval))
        except KeyboardInterrupt:
            pass
        return

    # Initialize database
    init_database(reset=args.reset)
    store = OrderStore()

    if args.stats:
        show_stats()
        return

    if args.export:
        export_to_csv()
        return

    try:
        if args.seed_menu:
            added = store.seed_menu()
            print(f"🥟 Seeded {added} menu items")

        if args.open or args.close:
            settings = store.set_accepting_orders(args.open)
            print(f"🏠 Kitchen is now {'open' if settings.is_open else 'closed'}")

        if args.customers or args.orders:
            generate_data(store, args.customers, args.orders, seed=args.seed)
    except (KitchenError, ValueError) as e:
        print(f"❌ {e}")
        sys.exit(1)

    show_stats()


if __name__ == "__main__":
    main()
