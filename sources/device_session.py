# device_session.py
"""
Stateful driver for one strap over a bleak GATT connection.

Lifecycle::

    DISCONNECTED → CONNECTING → CONNECTED → INITIALIZING → IDLE
                                   IDLE → SYNCING_HISTORY → IDLE
    any connected state → RECONNECTING (link lost)

Notification chunks are pushed by bleak's callback into an asyncio queue in
arrival order; ``sync_history`` drains the queue, cuts frames per
characteristic with a :class:`frame_codec.FrameBuffer` and hands each frame
to the :class:`controller.HistoryController`. Every write goes through
``send_command``, which holds a lock so only one write is in flight.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from bleak import BleakClient
from bleak.exc import BleakError

from app_logger import logger
from config import CONNECT_TIMEOUT_S, RECONNECT_BACKOFF_S, SYNC_IDLE_TIMEOUT_S, PlatformConfig
from controller import HistoryController
from frame_codec import FrameBuffer
from strap_packet import (
    CMD_TO_STRAP_UUID,
    NOTIFY_CHARACTERISTICS,
    MalformedFrame,
    MetadataType,
    StrapPacket,
    enter_high_freq_sync,
    exit_high_freq_sync,
    get_name,
    hello_harvard,
    history_end_ack,
    history_end_trim,
    history_start,
    set_clock,
)
from timing_decorator import timed

TRANSPORT_ERRORS = (BleakError, OSError, asyncio.TimeoutError)

_LINK_LOST = object()


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    SYNCING_HISTORY = "syncing_history"
    IDLE = "idle"
    RECONNECTING = "reconnecting"


class TransportError(RuntimeError):
    """Connect / write / notify failure against the BLE link. Retryable."""


class SyncTimeout(TransportError):
    """The strap stopped sending before signalling the end of its history."""


class DeviceSession:
    """
    Parameters
    ----------
    client : BleakClient-like
        Exclusively owned GATT client (``connect``, ``disconnect``,
        ``start_notify``, ``write_gatt_char``, ``is_connected``).
    controller : HistoryController
        Persists raw frames and decoded readings.
    notify_uuids : iterable of str
        Characteristics whose notifications carry frames.
    write_uuid : str
        Characteristic commands are written to.
    """

    def __init__(
        self,
        client: Any,
        controller: HistoryController,
        notify_uuids: Iterable[str] = NOTIFY_CHARACTERISTICS,
        write_uuid: str = CMD_TO_STRAP_UUID,
    ):
        self.client = client
        self.controller = controller
        self.notify_uuids = tuple(notify_uuids)
        self.write_uuid = write_uuid
        self.state = SessionState.DISCONNECTED
        self._queue: asyncio.Queue = asyncio.Queue()
        self._buffers: Dict[str, FrameBuffer] = {uuid: FrameBuffer() for uuid in self.notify_uuids}
        self._write_lock = asyncio.Lock()
        self._seq = 0
        self._ever_connected = False
        self._initialized = False

    @classmethod
    def from_device(
        cls,
        device: Any,
        controller: HistoryController,
        platform: Optional[PlatformConfig] = None,
        timeout: float = CONNECT_TIMEOUT_S,
    ) -> "DeviceSession":
        """Build a session around a ``BleakClient`` for a discovered device."""
        session = cls(None, controller)
        extra = platform.bleak_kwargs() if platform is not None else {}
        session.client = BleakClient(
            device, disconnected_callback=session._on_disconnect, timeout=timeout, **extra
        )
        return session

    @property
    def address(self) -> str:
        return getattr(self.client, "address", "?")

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------
    def _notification_handler(self, uuid: str):
        def handler(_characteristic: Any, data: bytearray) -> None:
            self._queue.put_nowait((uuid, bytes(data)))
        return handler

    def _on_disconnect(self, _client: Any) -> None:
        logger.warning("strap %s disconnected", self.address)
        self.state = SessionState.RECONNECTING
        self._queue.put_nowait((None, _LINK_LOST))

    def _drop_link_lost_markers(self) -> None:
        pending = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item[1] is not _LINK_LOST:
                pending.append(item)
        for item in pending:
            self._queue.put_nowait(item)

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------
    def is_connected(self) -> bool:
        return bool(self.client is not None and self.client.is_connected)

    @timed("connect")
    async def connect(self) -> None:
        """Open the GATT link and subscribe to every notify characteristic."""
        self.state = SessionState.RECONNECTING if self._ever_connected else SessionState.CONNECTING
        try:
            await self.client.connect()
            for uuid in self.notify_uuids:
                await self.client.start_notify(uuid, self._notification_handler(uuid))
        except TRANSPORT_ERRORS as exc:
            # A link without subscriptions must not count as connected.
            await self._drop_half_open_link()
            raise TransportError(f"connect to {self.address} failed: {exc}") from exc

        # Partial frames and link-lost markers from a dropped link are stale.
        for buffer in self._buffers.values():
            buffer.clear()
        self._drop_link_lost_markers()
        self._ever_connected = True
        self.state = SessionState.CONNECTED
        logger.info("connected to %s", self.address)

    async def _drop_half_open_link(self) -> None:
        if not self.is_connected():
            return
        try:
            await self.client.disconnect()
        except TRANSPORT_ERRORS as exc:
            logger.debug("dropping half-open link to %s failed: %s", self.address, exc)

    async def disconnect(self) -> None:
        try:
            await self.client.disconnect()
        except TRANSPORT_ERRORS as exc:
            logger.warning("disconnect from %s failed: %s", self.address, exc)
        self.state = SessionState.DISCONNECTED

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    def _next_seq(self) -> int:
        self._seq = (self._seq + 1) & 0xFF
        return self._seq

    async def send_command(self, packet: StrapPacket) -> None:
        """Write one command frame; concurrent callers are serialized."""
        async with self._write_lock:
            if not self.is_connected():
                raise TransportError(f"cannot send {packet!r}: not connected")
            packet = packet.with_seq(self._next_seq())
            try:
                await self.client.write_gatt_char(self.write_uuid, packet.to_bytes(), response=True)
            except TRANSPORT_ERRORS as exc:
                raise TransportError(f"write of {packet!r} failed: {exc}") from exc
            logger.debug("sent %r", packet)

    @timed("initialize")
    async def initialize(self) -> None:
        """Handshake the strap expects before it accepts a history request."""
        self.state = SessionState.INITIALIZING
        for packet in (
            hello_harvard(),
            set_clock(int(time.time())),
            get_name(),
            enter_high_freq_sync(),
        ):
            await self.send_command(packet)
        self._initialized = True
        self.state = SessionState.IDLE

    # ------------------------------------------------------------------
    # History download
    # ------------------------------------------------------------------
    async def _handle_metadata(self, packet: StrapPacket) -> bool:
        """React to history metadata; ``True`` once the strap reports completion."""
        meta = packet.metadata_type
        if meta is MetadataType.HISTORY_START:
            logger.debug("history batch started")
        elif meta is MetadataType.HISTORY_END:
            try:
                trim = history_end_trim(packet)
            except MalformedFrame as exc:
                logger.warning("ignoring history end marker: %s", exc)
                return False
            logger.debug("history batch ended (trim=%d), acknowledging", trim)
            await self.send_command(history_end_ack(trim))
        elif meta is MetadataType.HISTORY_COMPLETE:
            return True
        return False

    @timed("sync_history")
    async def sync_history(self, idle_timeout: Optional[float] = SYNC_IDLE_TIMEOUT_S) -> int:
        """
        Download the strap's buffered history.

        Returns the number of telemetry records stored. Malformed frames are
        skipped; the download only ends on the completion marker, a link
        loss (``TransportError``) or ``idle_timeout`` seconds of silence
        (``SyncTimeout``).
        """
        if not self._initialized:
            raise RuntimeError("initialize() must complete before sync_history()")

        self.state = SessionState.SYNCING_HISTORY
        before = self.controller.records_decoded
        try:
            await self.send_command(history_start())
            while True:
                try:
                    uuid, chunk = await asyncio.wait_for(self._queue.get(), timeout=idle_timeout)
                except asyncio.TimeoutError as exc:
                    raise SyncTimeout(f"no data from strap for {idle_timeout:.0f} s") from exc
                if chunk is _LINK_LOST:
                    raise TransportError("strap disconnected during history sync")

                buffer = self._buffers.setdefault(uuid, FrameBuffer())
                complete = False
                for frame in buffer.feed(chunk):
                    packet = self.controller.handle_frame(frame)
                    if packet is not None and await self._handle_metadata(packet):
                        complete = True
                if complete:
                    stored = self.controller.records_decoded - before
                    logger.info("history sync complete: %d records", stored)
                    return stored
        finally:
            if self.state is SessionState.SYNCING_HISTORY:
                self.state = SessionState.IDLE


# ----------------------------------------------------------------------
# Caller-level reconnect policy
# ----------------------------------------------------------------------
async def ensure_connected(session: DeviceSession, backoff: float = RECONNECT_BACKOFF_S) -> None:
    """Re-invoke ``connect()`` every ``backoff`` seconds until the link is up. No retry cap."""
    attempt = 0
    while not session.is_connected():
        attempt += 1
        try:
            await session.connect()
        except TransportError as exc:
            logger.warning("reconnect attempt %d failed: %s", attempt, exc)
            await asyncio.sleep(backoff)


async def exit_high_freq_sync_with_retry(
    session: DeviceSession, backoff: float = RECONNECT_BACKOFF_S
) -> None:
    """
    Leave the strap's high-frequency mode, reconnecting as often as needed.
    Only returns once the command was written.
    """
    while True:
        await ensure_connected(session, backoff)
        try:
            await session.send_command(exit_high_freq_sync())
            logger.info("strap left high-frequency sync")
            return
        except TransportError as exc:
            logger.warning("exit high-frequency sync failed: %s", exc)
            await asyncio.sleep(backoff)
