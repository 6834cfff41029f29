import sqlite3
from datetime import datetime
from pathlib import Path
from contextlib import contextmanager

from config import DATABASE_PATH


def get_connection(path: Path | str | None = None) -> sqlite3.Connection:
    db_path = Path(path or DATABASE_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor(path: Path | str | None = None):
    conn = get_connection(path)
    cursor = conn.cursor()
    try:
        yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_database(reset: bool = False, path: Path | str | None = None):
    db_path = Path(path or DATABASE_PATH)
    if reset and db_path.exists():
        db_path.unlink()

    conn = get_connection(db_path)
    cursor = conn.cursor()

    # Customer profiles
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT,
            points INTEGER NOT NULL DEFAULT 0,
            avatar TEXT,
            address TEXT,
            lat REAL,
            lng REAL,
            created_at TIMESTAMP NOT NULL
        )
    """)

    # Menu
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS menu_items (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            category TEXT NOT NULL,
            price REAL NOT NULL,
            image TEXT NOT NULL DEFAULT '',
            description TEXT,
            prep_time INTEGER NOT NULL DEFAULT 25,
            is_available BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMP NOT NULL
        )
    """)

    # Orders (order_seq backs the human-readable order number)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS orders (
            id TEXT PRIMARY KEY,
            order_seq INTEGER NOT NULL UNIQUE,
            order_number TEXT NOT NULL UNIQUE,
            user_id TEXT NOT NULL,
            user_name TEXT NOT NULL,
            subtotal REAL NOT NULL,
            delivery_fee REAL NOT NULL,
            total REAL NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            payment_method TEXT NOT NULL DEFAULT 'cash',
            payment_status TEXT NOT NULL DEFAULT 'pending',
            special_instructions TEXT NOT NULL DEFAULT '',
            delivery_address TEXT NOT NULL,
            lat REAL,
            lng REAL,
            driver_lat REAL,
            driver_lng REAL,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            delivered_at TIMESTAMP
        )
    """)

    # Order items (price and name are snapshots taken at order time)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS order_items (
            id TEXT PRIMARY KEY,
            order_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            menu_item_id TEXT,
            name TEXT NOT NULL,
            qty INTEGER NOT NULL CHECK (qty > 0),
            price REAL NOT NULL,
            FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
        )
    """)

    # Status audit trail
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS order_status_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            changed_at TIMESTAMP NOT NULL,
            FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
        )
    """)

    # Singleton kitchen settings
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS store_settings (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            is_open BOOLEAN NOT NULL DEFAULT TRUE,
            updated_at TIMESTAMP
        )
    """)
    cursor.execute(
        "INSERT OR IGNORE INTO store_settings (id, is_open, updated_at) VALUES (1, 1, ?)",
        (datetime.now().isoformat(),)
    )

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_created ON orders(created_at)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order ON order_items(order_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_history_order ON order_status_history(order_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_menu_category ON menu_items(category)")

    conn.commit()
    conn.close()


def get_table_counts(path: Path | str | None = None) -> dict:
    with get_cursor(path) as cursor:
        counts = {}
        tables = [
            "profiles", "menu_items", "orders", "order_items", "order_status_history"
        ]
        for table in tables:
            try:
                cursor.execute(f"SELECT COUNT(*) FROM {table}")
                counts[table] = cursor.fetchone()[0]
            except sqlite3.OperationalError:
                counts[table] = 0
        return counts
