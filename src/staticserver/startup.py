"""
Startup report printed once the listening socket is bound.

    (BANNER)
    🟡 Server starting...
    🟢 Server started successfully!
    🔗 Hostname: http://build-box:3000
    🔗 LocalHost: http://localhost:3000
    🕒 Time: 12:00:00
    📅 Date: 2026-10-18
    💻 Platform: linux
    📶 Server Status: Running
    🔴 Do ctrl + c to shut down the server.

This is operator-facing output and goes to stdout with print(), not
through logging.
"""

import socket
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple


BANNER = (
    "╔══════════════════════════════════════════════════════════════╗\n"
    "║   ___ _        _   _                                         ║\n"
    "║  / __| |_ __ _| |_(_)__   ___ ___ _ ___ _____ _ _            ║\n"
    "║  \\__ \\  _/ _` |  _| / _| (_-</ -_) '_\\ V / -_) '_|           ║\n"
    "║  |___/\\__\\__,_|\\__|_\\__| /__/\\___|_|  \\_/\\___|_|             ║\n"
    "║                                                              ║\n"
    "╚══════════════════════════════════════════════════════════════╝"
)


@dataclass
class StartupReport:
    """What the server prints once it is listening."""

    hostname: str
    address: str
    port: int
    started_at: datetime = field(default_factory=datetime.now)
    platform: str = sys.platform
    status: str = "Running"

    @classmethod
    def capture(cls, address: Tuple[str, int]) -> "StartupReport":
        """Build a report for a server bound to `address` right now."""
        host, port = address
        return cls(hostname=socket.gethostname(), address=host, port=port)

    @property
    def hostname_url(self) -> str:
        return f"http://{self.hostname}:{self.port}"

    @property
    def local_url(self) -> str:
        return f"http://localhost:{self.port}"

    def render(self) -> str:
        lines = [
            BANNER,
            "🟡 Server starting...",
            "🟢 Server started successfully!",
            f"🔗 Hostname: {self.hostname_url}",
            f"🔗 LocalHost: {self.local_url}",
            f"🕒 Time: {self.started_at.strftime('%X')}",
            f"📅 Date: {self.started_at.strftime('%x')}",
            f"💻 Platform: {self.platform}",
            f"📶 Server Status: {self.status}",
            "🔴 Do ctrl + c to shut down the server.",
        ]
        return "\n".join(lines)
