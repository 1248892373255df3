# config.py
"""
Runtime configuration for strap-sync.

Plain module constants, each overridable from the environment, plus the
:class:`PlatformConfig` value that captures host-OS quirks once at startup
and is then handed to the scanner instead of mutating process state.
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# ----------------------------------------------------------------------
# Configuration – override via environment variables if needed
# ----------------------------------------------------------------------
DB_FILE = Path(os.environ.get("STRAP_DB", "strap_sync.db"))   # SQLite file location
BLE_INTERFACE = os.environ.get("STRAP_BLE_INTERFACE")          # e.g. "hci0"
DEVICE_ADDRESS = os.environ.get("STRAP_ADDR")                  # strap MAC address
DEVICE_NAME = os.environ.get("STRAP_NAME")                     # advertised name

SCAN_DURATION_S = 10.0        # how long an interactive scan collects devices
POLL_INTERVAL_S = 1.0         # scanner poll period
RECONNECT_BACKOFF_S = 1.0     # fixed wait between reconnect attempts
CONNECT_TIMEOUT_S = 20.0      # bleak connect timeout
SYNC_IDLE_TIMEOUT_S = float(os.environ.get("STRAP_SYNC_IDLE_TIMEOUT", "60"))
REPLAY_PAGE_SIZE = 10_000     # packets fetched per replay query
HRV_WINDOW_SIZE = 10          # records per pooled RMSSD window


@dataclass(frozen=True)
class PlatformConfig:
    """
    Host quirks that influence BLE discovery.

    Parameters
    ----------
    system : str
        ``sys.platform`` value the config was derived from.
    addresses_reliable : bool
        ``False`` where the OS hides real device addresses behind a
        placeholder (CoreBluetooth reports ``00:00:00:00:00:00``); discovery
        then keys devices on name + transport id.
    ble_interface : str | None
        Adapter to bind to; ignored where the OS does not expose adapters.
    device_address : str | None
        Address filter for unattended runs; ignored where addresses are
        unreliable.
    """

    system: str
    addresses_reliable: bool = True
    ble_interface: Optional[str] = None
    device_address: Optional[str] = None

    @classmethod
    def detect(
        cls,
        system: Optional[str] = None,
        ble_interface: Optional[str] = BLE_INTERFACE,
        device_address: Optional[str] = DEVICE_ADDRESS,
    ) -> "PlatformConfig":
        system = system or sys.platform
        if system == "darwin":
            # Every address reads as zeros and adapters are not selectable.
            return cls(system=system, addresses_reliable=False)
        return cls(
            system=system,
            addresses_reliable=True,
            ble_interface=ble_interface,
            device_address=device_address,
        )

    def bleak_kwargs(self) -> dict:
        """Extra keyword arguments for ``BleakScanner`` and ``BleakClient`` on this host."""
        if self.ble_interface:
            return {"adapter": self.ble_interface}
        return {}
