"""Entry point for the pickup-order Textual app."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from pickup.config import DEBUG_LOG_PATH
from pickup.storefront_app import StorefrontApp


def configure_logging(path: str = DEBUG_LOG_PATH, level: int = logging.DEBUG) -> None:
    """Send log records to a file; the terminal belongs to the UI."""
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(log_path),
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pickup", description="Order ahead and pick up from local stores.")
    subcommands = parser.add_subparsers(dest="command")
    callback = subcommands.add_parser("callback", help="Handle a billing-provider redirect URL.")
    callback.add_argument("url", help="The redirect URL, e.g. pickup://callback/billing/success?...")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Run the Textual application."""
    args = build_parser().parse_args(argv)
    configure_logging()
    callback_url = args.url if args.command == "callback" else None
    StorefrontApp(callback_url=callback_url).run()


if __name__ == "__main__":
    main()
