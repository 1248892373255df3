"""crc_helper.py

Utility class that groups together the small helper functions that deal with
hex formatting and the two checksums carried by every strap frame.

Typical usage
-------------
>>> from crc_helper import CrcHelper
>>> CrcHelper.to_hex_string(b"\x01\xab")
'01:ab'
>>> ok = CrcHelper.verify_crc32(body, trailer)
"""

import struct
import zlib
from typing import Union

BytesLike = Union[bytes, bytearray, memoryview]

CRC8_POLY = 0x07


def _build_crc8_table(poly: int) -> tuple:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = ((crc << 1) ^ poly) if crc & 0x80 else (crc << 1)
            crc &= 0xFF
        table.append(crc)
    return tuple(table)


_CRC8_TABLE = _build_crc8_table(CRC8_POLY)


class CrcHelper:
    """
    Hex conversion plus CRC-8 / CRC-32 helpers for the strap framing.

    The header byte after the length field is a CRC-8 (polynomial 0x07,
    init 0) of the two length bytes; the 4-byte trailer is a little-endian
    CRC-32 (zlib / IEEE 802.3) of everything between header and trailer.
    """

    # ------------------------------------------------------------------
    # Hex conversion helpers
    # ------------------------------------------------------------------
    @staticmethod
    def to_hex_string(byte_array: BytesLike) -> str:
        """
        Convert a sequence of bytes to a colon-separated hex string.

        Example
        -------
        >>> CrcHelper.to_hex_string(b"\x01\xab")
        '01:ab'
        """
        return ":".join(f"{c:02x}" for c in bytes(byte_array))

    # ------------------------------------------------------------------
    # Checksums
    # ------------------------------------------------------------------
    @staticmethod
    def crc8(data: BytesLike) -> int:
        crc = 0
        for byte in bytes(data):
            crc = _CRC8_TABLE[crc ^ byte]
        return crc

    @staticmethod
    def crc32(data: BytesLike) -> int:
        return zlib.crc32(bytes(data)) & 0xFFFFFFFF

    @classmethod
    def crc32_trailer(cls, data: BytesLike) -> bytes:
        """Return the 4 trailer bytes that close a frame over ``data``."""
        return struct.pack("<I", cls.crc32(data))

    @classmethod
    def verify_crc32(cls, data: BytesLike, trailer: BytesLike) -> bool:
        """
        Re-compute the CRC-32 over ``data`` and compare it with the trailer.

        Parameters
        ----------
        data : bytes
            Frame body (packet type through the last payload byte).
        trailer : bytes
            The 4 bytes that followed the body on the wire.

        Returns
        -------
        bool
            ``True`` if the trailer matches.
        """
        if len(trailer) != 4:
            return False
        return cls.crc32_trailer(data) == bytes(trailer)
