"""Main entry point for the ntfy-sync command line client."""

import argparse
import logging
import os
import sys
import time
from datetime import datetime, timezone

from .config import AppConfig, load_config
from .errors import NotFound, NtfySyncError
from .scheduler import PollScheduler
from .selection import SelectionController
from .store import Store
from .sync import SubscriptionSyncManager
from .transport import HTTPMessageTransport

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

LAST_POLL_KEY = "last_poll"
RUN_TICK_SECONDS = 10


def _resolve(store: Store, args):
    subscription = store.find_subscription(args.topic, args.base_url)
    if subscription is None:
        raise NotFound(f"Not subscribed to {args.topic}")
    return subscription


def cmd_subscribe(store, manager, config, args) -> None:
    subscription = store.create_subscription(
        args.topic,
        base_url=args.base_url,
        display_name=args.name,
    )
    print(f"Subscribed to {subscription.topic_url()}")
    if not args.no_poll:
        added = manager.poll(subscription.id, raise_errors=True).result()
        print(f"{added} notification(s) received")


def cmd_list(store, manager, config, args) -> None:
    subscriptions = store.subscriptions()
    if not subscriptions:
        print("No subscriptions.")
        return
    for subscription in subscriptions:
        print(f"{subscription.name():40} {subscription.notification_count:5} notification(s)  {subscription.topic_url()}")


def cmd_show(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    notifications = store.sorted_notifications(subscription.id)
    if not notifications:
        print(f"You haven't received any notifications for {subscription.name()} yet.")
        print(f"To send one, simply PUT or POST to the topic URL: curl -d \"hi\" {subscription.topic_url()}")
        return
    for notification in notifications:
        print(f"[{notification.short_date_time()}] p{notification.priority} {notification.id}")
        if notification.display_title():
            print(f"  {notification.display_title()}")
        print(f"  {notification.message}")
        if notification.tags:
            print(f"  tags: {', '.join(notification.tags)}")


def cmd_poll(store, manager, config, args) -> None:
    if args.topic:
        futures = [manager.poll(_resolve(store, args).id, raise_errors=True)]
    else:
        futures = manager.poll_all(raise_errors=True)
    total = sum(future.result() for future in futures)
    store.set_meta(LAST_POLL_KEY, datetime.now(timezone.utc).isoformat())
    print(f"{total} new notification(s)")


def cmd_publish(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    manager.publish(
        subscription.id,
        args.message,
        title=args.title,
        priority=args.priority,
        tags=args.tags.split(",") if args.tags else None,
        click=args.click,
    ).result()
    print(f"Published to {subscription.topic_url()}")


def cmd_publish_test(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    manager.publish_test(subscription.id).result()
    print(f"Sent test notification to {subscription.topic_url()}")


def cmd_clear(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    deleted = SelectionController(store, subscription.id).delete_all()
    print(f"Deleted {deleted} notification(s)")


def cmd_delete(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    selection = SelectionController(store, subscription.id)
    selection.begin_editing()
    for notification_id in args.ids:
        selection.select(notification_id)
    deleted = selection.delete_selected()
    print(f"Deleted {deleted} notification(s)")


def cmd_unsubscribe(store, manager, config, args) -> None:
    subscription = _resolve(store, args)
    manager.unsubscribe(subscription.id).result()
    print(f"Unsubscribed from {subscription.topic_url()}")


def _poll_due(store, manager, scheduler: PollScheduler) -> None:
    futures = []
    for subscription_id in scheduler.due(s.id for s in store.subscriptions()):
        try:
            futures.append(manager.poll(subscription_id))
        except NotFound:
            continue
        scheduler.record_poll(subscription_id)
    if not futures:
        return
    total = sum(future.result() for future in futures)
    store.set_meta(LAST_POLL_KEY, datetime.now(timezone.utc).isoformat())
    logger.info(f"Polled {len(futures)} subscription(s), {total} new notification(s)")


def cmd_run(store, manager, config, args) -> None:
    """Poll each subscription on its own jittered cadence until interrupted."""
    scheduler = PollScheduler(config.scheduler)
    logger.info("Starting background polling (Ctrl-C to stop)...")
    try:
        while True:
            _poll_due(store, manager, scheduler)
            if args.once:
                return
            wait = scheduler.seconds_until_next()
            time.sleep(RUN_TICK_SECONDS if wait is None else min(wait, RUN_TICK_SECONDS))
    except KeyboardInterrupt:
        logger.info("Stopped.")


COMMANDS = {
    "subscribe": cmd_subscribe,
    "list": cmd_list,
    "show": cmd_show,
    "poll": cmd_poll,
    "publish": cmd_publish,
    "publish-test": cmd_publish_test,
    "clear": cmd_clear,
    "delete": cmd_delete,
    "unsubscribe": cmd_unsubscribe,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep a local cache of ntfy topic notifications in sync with the server"
    )
    parser.add_argument(
        "--db",
        default=None,
        help="SQLite file holding the local cache (default: DB_PATH env var or ntfy_state.db)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def topic_parser(name, help_text):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("topic", help="Topic name")
        sub.add_argument("--base-url", default=None, help="Server URL (default: NTFY_BASE_URL or https://ntfy.sh)")
        return sub

    sub = topic_parser("subscribe", "Subscribe to a topic")
    sub.add_argument("--name", default=None, help="Display name for the subscription")
    sub.add_argument("--no-poll", action="store_true", help="Do not fetch cached messages right away")

    subparsers.add_parser("list", help="List subscriptions")
    topic_parser("show", "Show notifications, newest first")

    sub = subparsers.add_parser("poll", help="Fetch new notifications")
    sub.add_argument("topic", nargs="?", default=None, help="Topic name (default: all subscriptions)")
    sub.add_argument("--base-url", default=None, help="Server URL")

    sub = topic_parser("publish", "Publish a message to a topic")
    sub.add_argument("message", help="Message body")
    sub.add_argument("--title", default=None)
    sub.add_argument("--priority", type=int, choices=range(1, 6), default=None)
    sub.add_argument("--tags", default=None, help="Comma-separated tags")
    sub.add_argument("--click", default=None, help="URL to open when the notification is clicked")

    topic_parser("publish-test", "Send a test notification")
    topic_parser("clear", "Delete all notifications of a topic")
    sub = topic_parser("delete", "Delete selected notifications")
    sub.add_argument("ids", nargs="+", help="Notification ids")
    topic_parser("unsubscribe", "Unsubscribe and delete all notifications of a topic")

    sub = subparsers.add_parser("run", help="Poll all subscriptions periodically")
    sub.add_argument("--once", action="store_true", help="Poll every due subscription once and exit")

    return parser


def main(argv=None) -> None:
    """Main entry point with command-line argument parsing."""
    args = build_parser().parse_args(argv)

    try:
        config: AppConfig = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)

    if hasattr(args, "base_url") and args.base_url is None:
        args.base_url = config.server.base_url

    store = Store(db_path=args.db or config.db_path)
    transport = HTTPMessageTransport(config.server)
    manager = SubscriptionSyncManager(store, transport, max_workers=config.sync.max_workers)
    try:
        COMMANDS[args.command](store, manager, config, args)
    except (NtfySyncError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)
    finally:
        manager.shutdown()
        store.close()


if __name__ == "__main__":
    main()
