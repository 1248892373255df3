#!/usr/bin/env python3
"""device_scanner.py
Strap discovery using bleak.

Contains the :class:`DeviceScanner` contract and its two platform adapters:

* :class:`AddressScanner` – hosts that report real device addresses
  (BlueZ, WinRT). Devices are keyed on their address and can be awaited by
  address.
* :class:`NameScanner` – hosts that hide addresses behind a placeholder
  (CoreBluetooth). Devices are keyed on sanitized name + the transport id
  bleak assigns.

Which adapter is used is decided once from :class:`config.PlatformConfig`;
the session never looks at the host OS. Picking one of several candidates
goes through a :class:`DeviceSelector` so unattended runs can plug in a
deterministic choice instead of the console prompt.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from app_logger import logger
from config import POLL_INTERVAL_S, SCAN_DURATION_S, PlatformConfig
from strap_packet import STRAP_SERVICE_UUID


class SetupError(RuntimeError):
    """Nothing to talk to: no adapter, no matching device, bad selection."""


def sanitize_name(name: Optional[str]) -> str:
    """Drop control characters (corrupted name data) and surrounding blanks."""
    if not name:
        return "Unknown"
    cleaned = "".join(c for c in name if c.isprintable()).strip()
    return cleaned or "Unknown"


@dataclass(frozen=True)
class DiscoveredDevice:
    name: str
    address: str                               # transport id on hosts without real addresses
    rssi: Optional[int] = None
    device: Any = field(default=None, compare=False, repr=False)   # BLEDevice handed to BleakClient

    @classmethod
    def from_bleak(cls, device: BLEDevice, advertisement: AdvertisementData) -> "DiscoveredDevice":
        return cls(
            name=sanitize_name(advertisement.local_name or device.name),
            address=device.address,
            rssi=advertisement.rssi,
            device=device,
        )

    @property
    def label(self) -> str:
        return f"{self.name} ({self.address})"


# ----------------------------------------------------------------------
# Scanner contract
# ----------------------------------------------------------------------
class DeviceScanner:
    """
    Collects strap advertisements for a fixed duration.

    Parameters
    ----------
    platform : PlatformConfig
        Host quirks (adapter selection, address reliability).
    poll_interval : float
        Step used when waiting for one specific device.
    """

    supports_address_filter = True

    def __init__(self, platform: PlatformConfig, poll_interval: float = POLL_INTERVAL_S):
        self.platform = platform
        self.poll_interval = poll_interval
        self._found: Dict[Hashable, DiscoveredDevice] = {}
        self._service_uuid = STRAP_SERVICE_UUID

    def key(self, device: DiscoveredDevice) -> Hashable:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Callback required by BleakScanner
    # ------------------------------------------------------------------
    def detection_callback(self, device: BLEDevice, advertisement_data: AdvertisementData) -> None:
        """
        Passed directly to ``BleakScanner``. Keeps the first sighting of
        every strap advertising the service, keyed by :meth:`key`.
        """
        uuids = [u.lower() for u in (advertisement_data.service_uuids or [])]
        if self._service_uuid.lower() not in uuids:
            return
        discovered = DiscoveredDevice.from_bleak(device, advertisement_data)
        key = self.key(discovered)
        if key not in self._found:
            logger.debug("discovered %s rssi=%s", discovered.label, discovered.rssi)
            self._found[key] = discovered

    async def _collect(self, duration: float) -> None:
        async with BleakScanner(
            self.detection_callback,
            service_uuids=[self._service_uuid],
            **self.platform.bleak_kwargs(),
        ):
            await asyncio.sleep(duration)

    async def scan(
        self, service_uuid: str = STRAP_SERVICE_UUID, duration: float = SCAN_DURATION_S
    ) -> List[DiscoveredDevice]:
        """Every distinct device advertising ``service_uuid`` seen during ``duration``."""
        self._found = {}
        self._service_uuid = service_uuid
        logger.info("scanning for %.0f seconds...", duration)
        try:
            await self._collect(duration)
        except (BleakError, OSError) as exc:
            raise SetupError(f"BLE adapter unavailable: {exc}") from exc
        return list(self._found.values())

    async def wait_for(
        self,
        match: Callable[[DiscoveredDevice], bool],
        timeout: Optional[float] = None,
    ) -> DiscoveredDevice:
        """
        Keep scanning in ``poll_interval`` slices until a device satisfies
        ``match``. Waits forever when ``timeout`` is ``None``.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while deadline is None or loop.time() < deadline:
            for device in await self.scan(duration=self.poll_interval):
                if match(device):
                    return device
        raise SetupError(f"no matching device found after {timeout:.0f} seconds")

    async def find_by_address(self, address: str) -> DiscoveredDevice:
        raise SetupError("device addresses are not available on this platform; use a name or --interactive")

    async def find_by_name(self, name: str, timeout: float = SCAN_DURATION_S) -> DiscoveredDevice:
        target = sanitize_name(name).lower()
        try:
            return await self.wait_for(lambda d: d.name.lower() == target, timeout=timeout)
        except SetupError as exc:
            raise SetupError(f"no device named `{sanitize_name(name)}` found after {timeout:.0f} seconds") from exc


class AddressScanner(DeviceScanner):
    def key(self, device: DiscoveredDevice) -> Hashable:
        return device.address.upper()

    async def find_by_address(self, address: str) -> DiscoveredDevice:
        wanted = address.upper()
        logger.info("waiting for %s to advertise...", wanted)
        return await self.wait_for(lambda d: d.address.upper() == wanted)


class NameScanner(DeviceScanner):
    supports_address_filter = False

    def key(self, device: DiscoveredDevice) -> Hashable:
        return (device.name, device.address)


def make_scanner(platform: PlatformConfig) -> DeviceScanner:
    if platform.addresses_reliable:
        return AddressScanner(platform)
    return NameScanner(platform)


# ----------------------------------------------------------------------
# Selection capability
# ----------------------------------------------------------------------
class DeviceSelector:
    def present(self, candidates: Sequence[DiscoveredDevice]) -> int:
        raise NotImplementedError


class ConsoleSelector(DeviceSelector):
    """Numbered prompt on the terminal; Enter picks the first device."""

    def __init__(self, input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def present(self, candidates: Sequence[DiscoveredDevice]) -> int:
        self.output_fn("Select a device")
        for index, device in enumerate(candidates):
            self.output_fn(f"  [{index}] {device.label}")
        answer = self.input_fn("device number [0]: ").strip()
        if not answer:
            return 0
        try:
            return int(answer)
        except ValueError as exc:
            raise SetupError(f"Invalid selection: {answer!r}") from exc


class AddressSelector(DeviceSelector):
    def __init__(self, address: str):
        self.address = address.upper()

    def present(self, candidates: Sequence[DiscoveredDevice]) -> int:
        for index, device in enumerate(candidates):
            if device.address.upper() == self.address:
                return index
        raise SetupError(f"device {self.address} not among the discovered devices")


class NameSelector(DeviceSelector):
    def __init__(self, name: str):
        self.name = sanitize_name(name).lower()

    def present(self, candidates: Sequence[DiscoveredDevice]) -> int:
        for index, device in enumerate(candidates):
            if device.name.lower() == self.name:
                return index
        raise SetupError(f"device named `{self.name}` not among the discovered devices")


async def select_device(
    scanner: DeviceScanner,
    selector: DeviceSelector,
    duration: float = SCAN_DURATION_S,
) -> DiscoveredDevice:
    """Scan, let ``selector`` choose, and validate the returned index."""
    candidates = await scanner.scan(duration=duration)
    if not candidates:
        raise SetupError("No devices found during scan. Ensure the strap is powered on and advertising")
    if isinstance(selector, ConsoleSelector):
        index = await asyncio.to_thread(selector.present, candidates)
    else:
        index = selector.present(candidates)
    if not 0 <= index < len(candidates):
        raise SetupError(f"Invalid selection: {index}")
    return candidates[index]


async def resolve_device(
    platform: PlatformConfig,
    address: Optional[str] = None,
    name: Optional[str] = None,
    interactive: bool = False,
    scanner: Optional[DeviceScanner] = None,
) -> DiscoveredDevice:
    """
    Pick the strap to download from.

    An explicit address waits for that device (only where addresses are
    real); a name scans and matches it; otherwise, or with ``interactive``,
    the operator chooses from everything found.
    """
    scanner = scanner or make_scanner(platform)
    address = address or platform.device_address
    if interactive:
        return await select_device(scanner, ConsoleSelector())
    if address and scanner.supports_address_filter:
        return await scanner.find_by_address(address)
    if name:
        return await scanner.find_by_name(name)
    if address:
        raise SetupError("device addresses are not available on this platform; use --name or --interactive")
    return await select_device(scanner, ConsoleSelector())
