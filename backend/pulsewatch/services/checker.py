"""Checker service - performs HTTP, TCP and ping probes."""
import asyncio
import logging
import re
import sys
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of a single probe attempt."""
    up: bool
    latency: float = 0.0  # seconds
    error: str = ""

    @property
    def latency_ms(self) -> int:
        return int(self.latency * 1000)


class Prober:
    """Base class for probe strategies. Probers hold no per-probe state."""

    kind = ""

    async def probe(self, target: str, timeout: float) -> ProbeResult:
        raise NotImplementedError


class HttpProber(Prober):
    """GET the target URL. Up means any response below 400."""

    kind = "http"

    def __init__(self, ignore_tls: bool = False):
        self.ignore_tls = ignore_tls

    async def probe(self, target: str, timeout: float) -> ProbeResult:
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                verify=not self.ignore_tls,
            ) as client:
                async with client.stream("GET", target) as response:
                    latency = time.monotonic() - start
                    status_code = response.status_code
        except httpx.TimeoutException:
            return ProbeResult(up=False, latency=time.monotonic() - start, error="request failed: timeout")
        except Exception as e:
            return ProbeResult(up=False, latency=time.monotonic() - start, error=f"request failed: {e}")

        if status_code >= 400:
            return ProbeResult(up=False, latency=latency, error=f"HTTP {status_code}")
        return ProbeResult(up=True, latency=latency)


def split_host_port(target: str) -> Tuple[str, int]:
    """Split "host:port" or "[v6]:port" into its parts.

    Raises:
        ValueError: If the port is missing or not a number
    """
    if target.startswith("["):
        host, sep, rest = target[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"missing port in address {target!r}")
        port_str = rest[1:]
    else:
        host, sep, port_str = target.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {target!r}")
    if not port_str.isdigit():
        raise ValueError(f"invalid port in address {target!r}")
    return host, int(port_str)


class TcpProber(Prober):
    """Open a TCP connection and close it again. No data is exchanged."""

    kind = "tcp"

    async def probe(self, target: str, timeout: float) -> ProbeResult:
        start = time.monotonic()
        try:
            host, port = split_host_port(target)
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
        except asyncio.TimeoutError:
            return ProbeResult(up=False, latency=time.monotonic() - start, error="tcp dial: timeout")
        except (OSError, ValueError) as e:
            return ProbeResult(up=False, latency=time.monotonic() - start, error=f"tcp dial: {e}")

        latency = time.monotonic() - start
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return ProbeResult(up=True, latency=latency)


# Round-trip time in ping output:
# Linux:   rtt min/avg/max/mdev = 1.234/1.234/1.234/0.000 ms
# macOS:   round-trip min/avg/max/stddev = 1.234/1.234/1.234/0.000 ms
# Windows: Average = 1ms
PING_LATENCY_RE = re.compile(r"(?:rtt|round-trip).*?=\s*[\d.]+/([\d.]+)/|Average\s*=\s*(\d+)\s*ms")


def parse_ping_latency(output: str) -> Optional[float]:
    """Average RTT in seconds from ping output, or None if not found."""
    match = PING_LATENCY_RE.search(output)
    if not match:
        return None
    value = match.group(1) or match.group(2)
    try:
        return float(value) / 1000.0
    except (TypeError, ValueError):
        return None


def ping_command(target: str) -> list:
    """System ping invocation for a single echo request with a 5s wait."""
    if sys.platform.startswith("win"):
        return ["ping", "-n", "1", "-w", "5000", target]
    return ["ping", "-c", "1", "-W", "5", target]


class PingProber(Prober):
    """ICMP echo through the system ping tool. Up means exit status 0."""

    kind = "ping"

    async def probe(self, target: str, timeout: float) -> ProbeResult:
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *ping_command(target),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            return ProbeResult(up=False, latency=time.monotonic() - start, error=f"ping: {e}")

        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # Deadline hit or loop stopped - don't leave the process behind
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
            raise

        latency = time.monotonic() - start
        if proc.returncode != 0:
            return ProbeResult(up=False, latency=latency, error=f"ping: exit status {proc.returncode}")

        parsed = parse_ping_latency(stdout.decode(errors="replace"))
        if parsed is not None:
            latency = parsed
        return ProbeResult(up=True, latency=latency)


def get_prober(monitor_type: str, ignore_tls: bool = False) -> Prober:
    """Prober for a monitor type. Unknown types fall back to HTTP."""
    if monitor_type == "tcp":
        return TcpProber()
    if monitor_type == "ping":
        return PingProber()
    if monitor_type == "http":
        return HttpProber(ignore_tls=ignore_tls)
    logger.debug(f"Unknown monitor type {monitor_type!r}, using HTTP prober")
    return HttpProber()


class CheckerService:
    """Runs one probe with a hard deadline."""

    async def check(
        self,
        monitor_type: str,
        target: str,
        timeout: float,
        ignore_tls: bool = False,
    ) -> ProbeResult:
        """Perform a check based on monitor type.

        A probe still running when the timeout expires is cancelled and
        reported as a failure.
        """
        prober = get_prober(monitor_type, ignore_tls)
        try:
            return await asyncio.wait_for(prober.probe(target, timeout), timeout=timeout)
        except asyncio.TimeoutError:
            return ProbeResult(up=False, latency=float(timeout), error=f"probe timed out after {timeout}s")


# Global instance
checker_service = CheckerService()
