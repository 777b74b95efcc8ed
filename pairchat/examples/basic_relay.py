from __future__ import annotations

import eventlet

eventlet.monkey_patch()

import argparse
import logging

from pairchat.configurations import relay_config
from pairchat.server import app
from pairchat.server.collaborators import InMemoryModerationStore

if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--port", type=int, default=8000, help="Port number to listen on"
    )
    parser.add_argument(
        "--match-delay", type=float, default=3.0,
        help="Seconds to wait for an interest match before falling back to random",
    )
    parser.add_argument(
        "--save-messages", action="store_true",
        help="Append every message to data/message_logs/<room>.jsonl",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    config = (
        relay_config.RelayConfig()
        .hosting(port=args.port, host="0.0.0.0")
        .matchmaking(match_delay_s=args.match_delay)
        .rooms(inactivity_timeout_s=600, inactivity_warning_lead_s=180)
        .moderation(
            moderation_store=InMemoryModerationStore(),
            save_message_logs=args.save_messages,
        )
        .logging(level=logging.DEBUG if args.debug else logging.INFO)
    )

    app.run(config)
