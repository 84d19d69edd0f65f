"""Command-line entry point for the datapup StatsD counter daemon.

Listens for StatsD datagrams and logs a running total per counter. Run as::

    datapup --address :8125

Press Ctrl-C to stop; the final totals are logged on the way out.
"""

from __future__ import annotations

import argparse
import logging
import signal
from typing import List, Mapping, Optional

from datapup.listener import Service
from datapup.service import BindError

DEFAULT_ADDRESS = ":8125"


def _log_totals(totals: Mapping[str, int]) -> None:
    if not totals:
        logging.info("no metrics received")
        return
    for name in sorted(totals):
        logging.info("final total %s: %d", name, totals[name])


def main(argv: Optional[List[str]] = None) -> None:
    """Parse command-line arguments and run the service until signalled."""

    parser = argparse.ArgumentParser(
        prog="datapup",
        description="Listen for StatsD counters over UDP and keep running totals.",
    )
    parser.add_argument(
        "-a",
        "--address",
        default=DEFAULT_ADDRESS,
        help="Address to listen on, host:port or :port (default: %s)" % DEFAULT_ADDRESS,
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    service = Service(args.address)

    def _handle_signal(signum, frame):
        """Signal handler that requests a clean shutdown."""
        del signum, frame
        service.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        service.listen()
    except BindError as err:
        logging.error("error: %s", err)
        raise SystemExit(1) from err

    _log_totals(service.snapshot())


if __name__ == "__main__":
    main()
