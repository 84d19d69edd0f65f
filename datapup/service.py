"""StatsD counter decoding and aggregation for datapup.

A datagram holds one or more newline separated metric lines::

    metric.name:value|type|@sample_rate|#tag1:value,tag2

Only ``name:value`` is parsed. The trailing segments are split off and
ignored. Each successfully parsed line is folded into a running total per
metric name; failing lines are collected and reported together without
undoing the lines that did apply.
"""

from __future__ import annotations

import logging
import re
import threading
from types import MappingProxyType
from typing import Dict, List, Mapping

_INT_LITERAL = re.compile(r"[+-]?[0-9]+", re.ASCII)
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class DatapupError(Exception):
    """Base class for every datapup error."""


class BindError(DatapupError):
    """The UDP listening socket could not be bound."""


class ReceiveError(DatapupError):
    """A single datagram read failed at the transport layer."""


class ParseError(DatapupError):
    """A metric line could not be parsed."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(reason)
        self.line = line
        self.reason = reason

    def report(self) -> str:
        """Return the batch report entry for this failure."""
        return 'error processing metric: "%s", %s' % (self.line, self.reason)


class EmptyMetricError(ParseError):
    def __init__(self, line: str) -> None:
        super().__init__(line, 'invalid metric: "%s"' % line)


class MissingValueError(ParseError):
    def __init__(self, line: str) -> None:
        super().__init__(line, 'invalid name/value pair: "%s"' % line)


class InvalidValueError(ParseError):
    def __init__(self, line: str, cause: str) -> None:
        super().__init__(line, 'can not convert value to int: "%s", %s' % (line, cause))
        self.cause = cause


class AggregateError(DatapupError):
    """One or more lines of a datagram failed to parse."""

    def __init__(self, errors: List[ParseError]) -> None:
        super().__init__("\n".join(err.report() for err in errors))
        self.errors = errors


def parse_value(text: str) -> int:
    """Parse a base-10 signed 64-bit integer literal.

    Raises ``ValueError`` carrying the conversion error text.
    """
    if not _INT_LITERAL.fullmatch(text):
        raise ValueError('strconv.ParseInt: parsing "%s": invalid syntax' % text)
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        raise ValueError('strconv.ParseInt: parsing "%s": value out of range' % text)
    return value


class Aggregator:
    """Running counter totals keyed by metric name."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def counters(self) -> Mapping[str, int]:
        """Read-only live view of the running totals.

        The view is not locked. Iterating it while a background receive
        thread adds a new name raises ``RuntimeError``; use :meth:`snapshot`
        for a stable copy.
        """
        return MappingProxyType(self._counters)

    def total(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Return a copy of the running totals."""
        with self._lock:
            return dict(self._counters)

    def handle_datagram(self, text: str) -> None:
        """Apply every metric line in ``text``.

        Parameters
        ----------
        text:
            Decoded datagram payload. It is split on ``\\n`` as-is, so a
            trailing newline produces one extra (failing) empty line.

        Raises
        ------
        AggregateError
            If any line failed. Lines that parsed are already applied.
        """
        errors: List[ParseError] = []
        for line in text.split("\n"):
            try:
                self.parse_and_apply(line)
            except ParseError as err:
                errors.append(err)
        if errors:
            raise AggregateError(errors)

    def parse_and_apply(self, line: str) -> None:
        """Parse one metric line and add its value to the running total."""
        parts = line.split("|")
        if not parts:
            raise EmptyMetricError(line)

        name_value = parts[0].split(":")
        if len(name_value) < 2:
            raise MissingValueError(line)

        name = name_value[0]
        try:
            value = parse_value(name_value[1])
        except ValueError as exc:
            raise InvalidValueError(line, str(exc)) from exc

        with self._lock:
            total = self._counters.get(name, 0) + value
            self._counters[name] = total
        logging.info("%s\t (total: %d)", line, total)
