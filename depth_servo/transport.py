"""Best-effort outbound command channels (UDP datagram or ZeroMQ PUSH).

A send never blocks and never raises: when the network or peer is not ready
the command is dropped, counted and logged (rate limited). Commands are
re-sent every tick, so a lost one is superseded by the next.
"""

from __future__ import annotations

import errno
import socket
from typing import Any, Dict, Optional, Tuple

from .logutil import RateLimitedLog, log


def parse_hostport(s: str) -> Tuple[str, int]:
    host, port = str(s).rsplit(":", 1)
    return host, int(port)


class UdpCommandChannel:
    """One command line per datagram."""

    def __init__(self, host: str, port: int):
        self.addr = (host, int(port))
        self.sent = 0
        self.dropped = 0
        self._closed = False
        self._err_log = RateLimitedLog("tx", 1.0)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        # Drop packets if kernel buffers are full rather than stalling the control tick.
        try:
            self.sock.setblocking(False)
        except OSError:
            pass

    def send(self, message: str) -> bool:
        if self._closed:
            self.dropped += 1
            return False
        try:
            buf = str(message).encode("utf-8")
        except UnicodeError:
            self.dropped += 1
            return False
        try:
            self.sock.sendto(buf, self.addr)
        except (BlockingIOError, InterruptedError):
            self.dropped += 1
            return False
        except OSError as e:
            self.dropped += 1
            if getattr(e, "errno", None) not in (errno.EWOULDBLOCK, errno.EAGAIN, errno.ENOBUFS):
                self._err_log(f"udp send to {self.addr[0]}:{self.addr[1]} failed: {e} (dropped={self.dropped})")
            return False
        self.sent += 1
        return True

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError:
            pass


class ZmqPushChannel:
    """ZeroMQ PUSH socket; the receiving side binds a PULL socket on the endpoint."""

    def __init__(self, endpoint: str, *, linger_ms: int = 200, sndhwm: int = 16):
        import zmq

        self._zmq = zmq
        self.endpoint = str(endpoint)
        self.sent = 0
        self.dropped = 0
        self._closed = False
        self._err_log = RateLimitedLog("tx", 1.0)
        self.ctx = zmq.Context.instance()
        self.sock = self.ctx.socket(zmq.PUSH)
        self.sock.setsockopt(zmq.LINGER, int(linger_ms))
        self.sock.setsockopt(zmq.SNDHWM, int(sndhwm))
        self.sock.connect(self.endpoint)

    def send(self, message: str) -> bool:
        zmq = self._zmq
        if self._closed:
            self.dropped += 1
            return False
        try:
            self.sock.send_string(str(message), flags=zmq.NOBLOCK)
        except zmq.Again:
            # No connected peer yet, or the high-water mark is reached.
            self.dropped += 1
            return False
        except zmq.ZMQError as e:
            self.dropped += 1
            self._err_log(f"zmq send to {self.endpoint} failed: {e} (dropped={self.dropped})")
            return False
        self.sent += 1
        return True

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except self._zmq.ZMQError:
            pass


class PrintChannel:
    """Dry-run channel: commands go to stdout instead of the vehicle."""

    def __init__(self):
        self.sent = 0
        self.dropped = 0
        self._closed = False

    def send(self, message: str) -> bool:
        if self._closed:
            self.dropped += 1
            return False
        log("tx", str(message).rstrip("\n"))
        self.sent += 1
        return True

    def close(self):
        self._closed = True


def open_channel(cfg: Dict[str, Any]):
    """Build a channel from the `transport` config section."""
    kind = str(cfg.get("kind", "udp")).strip().lower()
    if kind == "udp":
        host, port = parse_hostport(cfg.get("endpoint", "127.0.0.1:1212"))
        log("tx", f"udp -> {host}:{port}")
        return UdpCommandChannel(host, port)
    if kind == "zmq":
        ep = str(cfg.get("endpoint", "127.0.0.1:1212"))
        if "://" not in ep:
            ep = f"tcp://{ep}"
        log("tx", f"zmq push -> {ep}")
        return ZmqPushChannel(ep, linger_ms=int(cfg.get("linger_ms", 200)))
    if kind in ("print", "dry_run", "none"):
        return PrintChannel()
    raise ValueError(f"unknown transport kind: {kind!r}")


def close_channel(ch: Optional[Any]) -> None:
    if ch is None:
        return
    try:
        ch.close()
    except Exception as e:
        log("tx", f"close failed: {e}")
