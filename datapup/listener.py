"""UDP listener that feeds StatsD datagrams to an :class:`Aggregator`."""

from __future__ import annotations

import logging
import select
import socket
import threading
from typing import Dict, Optional, Tuple

from datapup.service import AggregateError, Aggregator, BindError, ReceiveError

MAX_DATAGRAM_SIZE = 1024
POLL_INTERVAL = 0.5


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port``, ``:port`` or ``[v6host]:port`` into its parts.

    An empty host means every IPv4 interface (not dual-stack). The port must
    be numeric; service names are rejected.
    """
    host, sep, port_text = address.rpartition(":")
    if not sep or not (port_text.isascii() and port_text.isdigit()):
        raise BindError("invalid address: %r" % address)
    port = int(port_text)
    if port > 65535:
        raise BindError("invalid port in address: %r" % address)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise BindError("invalid address: %r (IPv6 hosts need brackets)" % address)
    return host or "0.0.0.0", port


def bind(address: str) -> socket.socket:
    """Resolve ``address`` and return a bound UDP socket.

    Raises :class:`BindError` when the address does not parse or resolve,
    or the port is already taken.
    """
    host, port = parse_address(address)
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_UNSPEC, socket.SOCK_DGRAM)
    except socket.gaierror as exc:
        raise BindError("cannot resolve %r: %s" % (address, exc)) from exc

    family, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.bind(sockaddr)
    except OSError as exc:
        sock.close()
        raise BindError("cannot bind %r: %s" % (address, exc)) from exc
    return sock


def _receive(sock: socket.socket, buf: bytearray) -> int:
    try:
        return sock.recv_into(buf)
    except OSError as exc:
        raise ReceiveError("receive failed: %s" % exc) from exc


def run(
    sock: socket.socket,
    aggregator: Aggregator,
    stop: Optional[threading.Event] = None,
    poll_interval: float = POLL_INTERVAL,
) -> None:
    """Receive datagrams on ``sock`` until ``stop`` is set.

    Parameters
    ----------
    sock:
        Bound UDP socket. It is closed when the loop exits.
    aggregator:
        Receives every datagram as text.
    stop:
        Optional event ending the loop. Without one the loop runs until
        the process is terminated.
    poll_interval:
        Seconds between checks of ``stop`` while no datagram arrives.

    Datagrams longer than ``MAX_DATAGRAM_SIZE`` are truncated by the read.
    Receive and parse failures are logged and the loop carries on.
    """
    buf = bytearray(MAX_DATAGRAM_SIZE)
    try:
        while stop is None or not stop.is_set():
            ready, _, _ = select.select([sock], [], [], poll_interval)
            if not ready:
                continue
            try:
                nbytes = _receive(sock, buf)
            except ReceiveError as err:
                logging.error("error: %s", err)
                continue

            text = buf[:nbytes].decode("utf-8", errors="replace")
            try:
                aggregator.handle_datagram(text)
            except AggregateError as err:
                logging.error("error: %s", err)
    finally:
        sock.close()


class Service:
    """A datapup service bound to one address with its own counters."""

    def __init__(self, address: str, aggregator: Optional[Aggregator] = None) -> None:
        self._address = address
        self.aggregator = aggregator if aggregator is not None else Aggregator()
        self.server_address: Optional[Tuple[str, int]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        return self._address

    def snapshot(self) -> Dict[str, int]:
        return self.aggregator.snapshot()

    def _bind(self) -> socket.socket:
        logging.info("starting datapup service at %s", self._address)
        sock = bind(self._address)
        self.server_address = sock.getsockname()[:2]
        return sock

    def listen(self) -> None:
        """Bind and receive in the calling thread until :meth:`stop`."""
        sock = self._bind()
        run(sock, self.aggregator, self._stop)

    def start(self) -> Tuple[str, int]:
        """Bind now and receive on a background thread.

        Returns the bound ``(host, port)``, useful when binding port 0.
        """
        sock = self._bind()
        self._thread = threading.Thread(
            target=run, args=(sock, self.aggregator, self._stop), daemon=True
        )
        self._thread.start()
        return self.server_address

    def stop(self) -> None:
        """Request the receive loop to exit."""
        self._stop.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
