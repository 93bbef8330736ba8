"""
Command line location publisher.

Shares a position feed for one schedule on the tracking channel, using a
recorded track (JSON list of {"lat", "lng"} points) as the geolocation
source. Handy for demos and for driving the passenger map during QA.

Examples:
    python scripts/share_location.py --schedule 42 --user-id 7 --user-name "Ama" \
        --track tracks/circle_madina.json
    python scripts/share_location.py --schedule 42 --user-id 7 --user-name "Ama" \
        --track tracks/circle_madina.json --resume
    python scripts/share_location.py --schedule 42 --stop

Ctrl-C closes the session but keeps the sharing flag, so ``--resume``
picks it up again; ``--stop`` turns sharing off for good.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from busline.app.core import sharing_config
from busline.app.core.config import settings
from busline.app.core.observability import configure_logging
from busline.app.core.reliability import ReconnectPolicy
from busline.app.domain.sharing.channel import WebSocketTrackingChannel, tracking_url
from busline.app.domain.sharing.geolocation import ReplayGeolocation
from busline.app.domain.sharing.notices import Notifier
from busline.app.domain.sharing.publisher import LocationPublisher, PublisherState
from busline.app.domain.sharing.state_store import FileSharingStateStore
from busline.app.domain.sharing.visibility import ScheduleVisibilityClient
from busline.app.models.enums import UserRole


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Share a location feed on the tracking channel")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000", help="Site URL of the tracking backend")
    parser.add_argument("--schedule", required=True, help="Schedule ID to share for")
    parser.add_argument("--user-id", help="Publisher user ID")
    parser.add_argument("--user-name", help="Publisher display name")
    parser.add_argument("--role", choices=["passenger", "driver"], default="passenger")
    parser.add_argument("--track", help="JSON file with the points to replay")
    parser.add_argument("--interval", type=float, default=2.0, help="Seconds between points")
    parser.add_argument("--token", help="Access token; binds the channel to your identity")
    parser.add_argument("--store", default=sharing_config.DEFAULT_STORE_PATH, help="Sharing state file")
    parser.add_argument("--reconnect-retries", type=int, default=sharing_config.RECONNECT_MAX_RETRIES)
    parser.add_argument("--resume", action="store_true", help="Only start if this device was already sharing")
    parser.add_argument("--stop", action="store_true", help="Clear the sharing flag and exit")
    args = parser.parse_args(argv)

    if not args.stop and not (args.user_id and args.user_name and args.track):
        parser.error("--user-id, --user-name and --track are required unless --stop is given")
    return args


async def run(args) -> int:
    store = FileSharingStateStore(args.store)

    if args.stop:
        await store.clear(args.schedule)
        print(f"Sharing flag cleared for schedule {args.schedule}")
        return 0

    role = UserRole(args.role.upper())
    url = tracking_url(args.base_url, token=args.token)
    visibility = None
    if role == UserRole.DRIVER and args.token:
        visibility = ScheduleVisibilityClient(args.base_url, args.token)

    publisher = LocationPublisher(
        role=role,
        geolocation=ReplayGeolocation.from_file(args.track, interval=args.interval),
        channel_factory=lambda schedule_id: WebSocketTrackingChannel(url),
        store=store,
        notifier=Notifier(),
        reconnect_policy=ReconnectPolicy(max_retries=args.reconnect_retries),
        visibility=visibility,
    )

    async with publisher:
        if args.resume:
            started = await publisher.resume(args.schedule, args.user_id, args.user_name)
            if not started and publisher.last_error is None:
                print(f"Not sharing for schedule {args.schedule}; nothing to resume")
                return 0
        else:
            started = await publisher.start(args.schedule, args.user_id, args.user_name)

        if not started:
            return 1

        while publisher.state is not PublisherState.IDLE:
            await asyncio.sleep(0.5)

    return 1 if publisher.last_error else 0


def main(argv=None) -> int:
    configure_logging(settings.log_level)
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
