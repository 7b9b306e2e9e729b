"""Shared machinery for protocol discoverers.

Every discoverer supports two modes:

- one-shot: ``discover(timeout)`` / ``discover_until(stop)`` collect devices
  into a session-scoped map and return them when the deadline passes
- continuous: ``start_discovery()`` returns a bounded queue that a background
  task fills until ``stop_discovery()`` is called

Queues are lossy. When a consumer falls behind, new items are dropped rather
than blocking the producer; discovery protocols re-announce periodically, so
a dropped observation comes back on the next broadcast.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from shelly_discovery.models.device import DiscoveredDevice, DiscoveryProtocol

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100

# Pause before retrying a continuous-mode step that failed outright.
ERROR_BACKOFF = 1.0

DatagramParser = Callable[[bytes, tuple[str, int]], DiscoveredDevice | None]


def offer(queue: asyncio.Queue, item: Any) -> bool:
    """Put an item without waiting. Returns False if it was dropped."""
    try:
        queue.put_nowait(item)
    except asyncio.QueueFull:
        return False
    return True


class DatagramInbox(asyncio.DatagramProtocol):
    """Moves received datagrams into a bounded queue.

    The socket reader only copies bytes; parsing happens in whichever task
    drains ``queue``, so a slow parser never stalls the read side.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.queue: asyncio.Queue[tuple[bytes, tuple[str, int]]] = asyncio.Queue(maxsize=maxsize)
        self.transport: asyncio.DatagramTransport | None = None
        self.dropped = 0

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not offer(self.queue, (bytes(data), addr)):
            self.dropped += 1
            logger.debug(f"Inbox full, dropped datagram from {addr[0]}")

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"Datagram socket error: {exc}")


async def collect_datagrams(
    inbox: DatagramInbox,
    stop: asyncio.Event,
    parse: DatagramParser,
    devices: dict[str, DiscoveredDevice],
) -> None:
    """Parse datagrams from ``inbox`` into ``devices`` until ``stop`` is set."""

    async def consume() -> None:
        while True:
            data, addr = await inbox.queue.get()
            try:
                device = parse(data, addr)
            except Exception as e:
                logger.debug(f"Discarded datagram from {addr[0]}: {e}")
                continue
            if device is not None and device.id:
                devices[device.id] = device

    consumer = asyncio.create_task(consume())
    try:
        await stop.wait()
    finally:
        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer


class Discoverer(ABC):
    """Base class for a single-protocol discoverer."""

    protocol: DiscoveryProtocol

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task | None = None
        self._devices_queue: asyncio.Queue[DiscoveredDevice] | None = None

    @property
    def running(self) -> bool:
        """True while continuous discovery is active."""
        return self._running

    async def discover(self, timeout: float) -> list[DiscoveredDevice]:
        """Discover devices for ``timeout`` seconds."""
        stop = asyncio.Event()
        handle = asyncio.get_running_loop().call_later(timeout, stop.set)
        try:
            return await self.discover_until(stop)
        finally:
            handle.cancel()

    @abstractmethod
    async def discover_until(self, stop: asyncio.Event) -> list[DiscoveredDevice]:
        """Discover devices until ``stop`` is set or the caller is cancelled."""

    async def start_discovery(self) -> asyncio.Queue[DiscoveredDevice]:
        """Begin continuous discovery and return the queue devices arrive on.

        Calling this while already running returns the existing queue.
        """
        async with self._lock:
            if self._running and self._devices_queue is not None:
                return self._devices_queue

            await self._prepare_continuous()
            self._devices_queue = asyncio.Queue(maxsize=self.queue_size)
            self._task = asyncio.create_task(
                self._run_continuous(), name=f"{self.protocol.value}-discovery"
            )
            self._running = True
            logger.info(f"Started continuous {self.protocol.value} discovery")
            return self._devices_queue

    async def stop_discovery(self) -> None:
        """Stop continuous discovery. Does nothing if it is not running."""
        async with self._lock:
            if not self._running:
                return
            task, self._task = self._task, None
            self._running = False

        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._release_continuous()
        logger.info(f"Stopped continuous {self.protocol.value} discovery")

    async def stop(self) -> None:
        """Stop the discoverer and release its resources."""
        await self.stop_discovery()

    async def _prepare_continuous(self) -> None:
        """Acquire resources continuous mode needs; may raise to refuse starting."""

    async def _release_continuous(self) -> None:
        """Release resources acquired by ``_prepare_continuous``."""

    @abstractmethod
    async def _run_continuous(self) -> None:
        """Background loop feeding ``_publish`` until cancelled."""

    def _publish(self, device: DiscoveredDevice) -> None:
        queue = self._devices_queue
        if queue is not None and not offer(queue, device):
            logger.debug(f"Device queue full, dropped {device.id}")

    async def _repeat(
        self,
        interval: float,
        discover_once: Callable[[], Awaitable[list[DiscoveredDevice]]],
    ) -> None:
        """Run ``discover_once`` every ``interval`` seconds, publishing results."""
        while True:
            try:
                devices = await discover_once()
            except Exception as e:
                logger.warning(f"{self.protocol.value} discovery pass failed: {e}")
            else:
                for device in devices:
                    self._publish(device)
            await asyncio.sleep(interval)
