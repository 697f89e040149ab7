"""SQLite persistence for subscriptions and received notifications."""

import json
import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from .models import NotificationRecord, SubscriptionState


def init_db(db_path: str) -> sqlite3.Connection:
    """
    Initialize the database and create tables if they don't exist.
    
    Args:
        db_path: Path to the SQLite database file, or ":memory:".
        
    Returns:
        A connection to the database. The store serializes access to it, so
        it may be used from the sync worker threads.
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id TEXT PRIMARY KEY,
            topic TEXT NOT NULL,
            base_url TEXT NOT NULL,
            display_name TEXT,
            created_at INTEGER NOT NULL,
            last_notification_time INTEGER,
            UNIQUE (topic, base_url)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            subscription_id TEXT NOT NULL REFERENCES subscriptions(id) ON DELETE CASCADE,
            seq INTEGER NOT NULL,
            time INTEGER NOT NULL,
            title TEXT,
            message TEXT NOT NULL,
            priority INTEGER NOT NULL,
            tags TEXT NOT NULL,
            click TEXT
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS tombstones (
            id TEXT NOT NULL,
            subscription_id TEXT NOT NULL REFERENCES subscriptions(id) ON DELETE CASCADE,
            PRIMARY KEY (id, subscription_id)
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)
    conn.commit()
    return conn


def load_subscriptions(conn: sqlite3.Connection) -> List[SubscriptionState]:
    """
    Load every subscription with its notifications and tombstones.
    
    Args:
        conn: Database connection.
        
    Returns:
        Subscription states ordered by creation, notifications in arrival order.
    """
    states: Dict[str, SubscriptionState] = {}
    cursor = conn.execute(
        "SELECT id, topic, base_url, display_name, created_at, last_notification_time "
        "FROM subscriptions ORDER BY created_at, rowid"
    )
    for row in cursor.fetchall():
        states[row[0]] = SubscriptionState(
            id=row[0],
            topic=row[1],
            base_url=row[2],
            display_name=row[3],
            created_at=row[4],
            last_notification_time=row[5],
        )

    cursor = conn.execute(
        "SELECT id, subscription_id, time, title, message, priority, tags, click "
        "FROM notifications ORDER BY seq"
    )
    for row in cursor.fetchall():
        state = states.get(row[1])
        if state is None:
            continue
        state.notifications[row[0]] = NotificationRecord(
            id=row[0],
            subscription_id=row[1],
            time=row[2],
            title=row[3],
            message=row[4],
            priority=row[5],
            tags=tuple(json.loads(row[6])),
            click=row[7],
        )

    cursor = conn.execute("SELECT id, subscription_id FROM tombstones")
    for notification_id, subscription_id in cursor.fetchall():
        if subscription_id in states:
            states[subscription_id].deleted_ids.add(notification_id)

    return list(states.values())


def save_subscription(conn: sqlite3.Connection, state: SubscriptionState) -> None:
    """Insert or update the subscription row (not its notifications)."""
    conn.execute(
        "INSERT OR REPLACE INTO subscriptions "
        "(id, topic, base_url, display_name, created_at, last_notification_time) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (state.id, state.topic, state.base_url, state.display_name,
         state.created_at, state.last_notification_time)
    )
    conn.commit()


def delete_subscription(conn: sqlite3.Connection, subscription_id: str) -> None:
    """Delete a subscription; notifications and tombstones cascade."""
    conn.execute("DELETE FROM subscriptions WHERE id = ?", (subscription_id,))
    conn.commit()


def insert_notifications(
    conn: sqlite3.Connection,
    subscription_id: str,
    records: Iterable[NotificationRecord],
    last_notification_time: Optional[int],
) -> None:
    """
    Insert notifications and bump the subscription's high-water mark, in one transaction.
    
    Args:
        conn: Database connection.
        subscription_id: Owning subscription.
        records: New records in arrival order.
        last_notification_time: New high-water mark for the subscription.
    """
    row = conn.execute("SELECT COALESCE(MAX(seq), 0) FROM notifications").fetchone()
    seq = row[0]
    rows = []
    for record in records:
        seq += 1
        rows.append((record.id, record.subscription_id, seq, record.time, record.title,
                     record.message, record.priority, json.dumps(list(record.tags)), record.click))
    with conn:
        conn.executemany(
            "INSERT OR IGNORE INTO notifications "
            "(id, subscription_id, seq, time, title, message, priority, tags, click) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            rows
        )
        conn.execute(
            "UPDATE subscriptions SET last_notification_time = ? WHERE id = ?",
            (last_notification_time, subscription_id)
        )


def delete_notifications(
    conn: sqlite3.Connection,
    subscription_id: str,
    notification_ids: Iterable[str],
) -> None:
    """
    Delete notifications and remember their ids so re-delivery is ignored.
    
    Args:
        conn: Database connection.
        subscription_id: Owning subscription.
        notification_ids: Ids to remove.
    """
    pairs: List[Tuple[str, str]] = [(nid, subscription_id) for nid in notification_ids]
    with conn:
        conn.executemany(
            "DELETE FROM notifications WHERE id = ? AND subscription_id = ?",
            pairs
        )
        conn.executemany(
            "INSERT OR IGNORE INTO tombstones (id, subscription_id) VALUES (?, ?)",
            pairs
        )


def get_meta(conn: sqlite3.Connection, key: str) -> Optional[str]:
    """
    Get a metadata value from the database.
    
    Args:
        conn: Database connection.
        key: Metadata key.
        
    Returns:
        The metadata value, or None if not found.
    """
    cursor = conn.execute("SELECT value FROM meta WHERE key = ?", (key,))
    row = cursor.fetchone()
    return row[0] if row else None


def set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    """
    Set a metadata value in the database.
    
    Args:
        conn: Database connection.
        key: Metadata key.
        value: Metadata value.
    """
    conn.execute(
        "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
        (key, value)
    )
    conn.commit()
