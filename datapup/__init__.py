"""datapup: a small StatsD counter daemon."""

from datapup.listener import MAX_DATAGRAM_SIZE, Service, bind, parse_address, run
from datapup.service import (
    AggregateError,
    Aggregator,
    BindError,
    DatapupError,
    EmptyMetricError,
    InvalidValueError,
    MissingValueError,
    ParseError,
    ReceiveError,
)

__version__ = "0.1.0"
