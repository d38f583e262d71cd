"""Authenticated access to a replay protected memory block partition."""

from __future__ import annotations

import hashlib
import hmac
import os
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Protocol

PACKET_SIZE = 512
DATA_SIZE = 256
KEY_SIZE = 32
NONCE_SIZE = 16
_PAD_SIZE = 196
_MAC_START = _PAD_SIZE + KEY_SIZE
_PACKET = struct.Struct(f">{_PAD_SIZE}x{KEY_SIZE}s{DATA_SIZE}s{NONCE_SIZE}sIHHHH")


class RpmbResult(IntEnum):
    OK = 0x0000
    GENERAL_FAILURE = 0x0001
    AUTH_FAILURE = 0x0002
    COUNT_FAILURE = 0x0003
    ADDR_FAILURE = 0x0004
    WRITE_FAILURE = 0x0005
    READ_FAILURE = 0x0006
    NO_AUTH_KEY = 0x0007
    WRITE_COUNTER_EXPIRED = 0x0080


class RpmbRequest(IntEnum):
    PROGRAM_KEY = 0x0001
    GET_COUNTER = 0x0002
    DATA_WRITE = 0x0003
    DATA_READ = 0x0004
    RESULT_READ = 0x0005


class RpmbResponse(IntEnum):
    PROGRAM_KEY = 0x0100
    GET_COUNTER = 0x0200
    DATA_WRITE = 0x0300
    DATA_READ = 0x0400


def _as_result(value: int | None) -> RpmbResult | int | None:
    if value is None:
        return None
    try:
        return RpmbResult(value)
    except ValueError:
        return value


class RpmbError(Exception):
    """An RPMB command failed; ``result`` holds the reported result code."""

    def __init__(self, message: str, result: int | None = None) -> None:
        super().__init__(message)
        self.result = _as_result(result)


class RpmbAddressError(RpmbError):
    """The device rejected the address of a command."""


@dataclass
class RpmbPacket:
    """One 512 byte RPMB data frame."""

    key_mac: bytes = field(default=bytes(KEY_SIZE))
    data: bytes = field(default=bytes(DATA_SIZE))
    nonce: bytes = field(default=bytes(NONCE_SIZE))
    write_counter: int = 0
    address: int = 0
    block_count: int = 0
    result: int = 0
    req_resp: int = 0

    def __post_init__(self) -> None:
        self.key_mac = bytes(self.key_mac)
        self.data = bytes(self.data)
        self.nonce = bytes(self.nonce)
        for name, value, size in (
            ("key_mac", self.key_mac, KEY_SIZE),
            ("data", self.data, DATA_SIZE),
            ("nonce", self.nonce, NONCE_SIZE),
        ):
            if len(value) != size:
                raise ValueError(f"{name} must be {size} bytes, not {len(value)}")
        if not 0 <= self.write_counter <= 0xFFFFFFFF:
            raise ValueError(f"write counter {self.write_counter} out of range")
        for name in ("address", "block_count", "result", "req_resp"):
            value = getattr(self, name)
            if not 0 <= value <= 0xFFFF:
                raise ValueError(f"{name} {value} out of range")

    def to_bytes(self) -> bytes:
        """Return the big-endian wire form of the frame."""
        return _PACKET.pack(
            self.key_mac,
            self.data,
            self.nonce,
            self.write_counter,
            self.address,
            self.block_count,
            self.result,
            self.req_resp,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> RpmbPacket:
        """Parse one frame from its wire form."""
        if len(data) != PACKET_SIZE:
            raise ValueError(f"RPMB frame must be {PACKET_SIZE} bytes, not {len(data)}")
        return cls(*_PACKET.unpack(data))


def compute_mac(key: bytes, packets: Iterable[RpmbPacket]) -> bytes:
    """HMAC-SHA256 over the data-to-end part of every frame in ``packets``."""
    mac = hmac.new(bytes(key), digestmod=hashlib.sha256)
    for packet in packets:
        mac.update(packet.to_bytes()[_MAC_START:])
    return mac.digest()


class RpmbTransport(Protocol):
    """Sends raw frames to the device and returns ``read_size`` bytes of reply."""

    def __call__(
        self, reliable_write: bytes, write: bytes, read_size: int, sync: bool
    ) -> bytes: ...


def _check_response(
    command: str,
    expected: RpmbResponse,
    responses: list[RpmbPacket],
    mac: bytes | None = None,
    nonce: bytes | None = None,
    address: int | None = None,
) -> None:
    last = len(responses) - 1
    for index, res in enumerate(responses):
        if res.req_resp != expected:
            raise RpmbError(
                f"{command}: bad response type 0x{res.req_resp:x}, "
                f"expected 0x{int(expected):x}",
                res.result,
            )
        if res.result != RpmbResult.OK:
            if res.result == RpmbResult.ADDR_FAILURE:
                raise RpmbAddressError(
                    f"{command}: address failure, {res.address}", res.result
                )
            raise RpmbError(f"{command}: bad result 0x{res.result:x}", res.result)
        if index == last and mac is not None and not hmac.compare_digest(
            res.key_mac, mac
        ):
            raise RpmbError(f"{command}: bad MAC", RpmbResult.AUTH_FAILURE)
        if nonce is not None and not hmac.compare_digest(res.nonce, nonce):
            raise RpmbError(f"{command}: bad nonce", res.result)
        if address is not None and res.address != address:
            raise RpmbError(
                f"{command}: bad address, got {res.address}, expected {address}",
                res.result,
            )


class Rpmb:
    """Authenticated reads and writes through an RPMB transport."""

    def __init__(self, transport: RpmbTransport, key: bytes) -> None:
        key = bytes(key)
        if len(key) != KEY_SIZE:
            raise ValueError(f"RPMB key must be {KEY_SIZE} bytes")
        self._transport = transport
        self.key = key
        self.write_counter = 0

    def _send(
        self, reliable_write: bytes, write: bytes, count: int, sync: bool
    ) -> list[RpmbPacket]:
        reply = self._transport(reliable_write, write, count * PACKET_SIZE, sync)
        if len(reply) != count * PACKET_SIZE:
            raise RpmbError(
                f"short reply: got {len(reply)} bytes, expected {count * PACKET_SIZE}"
            )
        return [
            RpmbPacket.from_bytes(reply[offset : offset + PACKET_SIZE])
            for offset in range(0, len(reply), PACKET_SIZE)
        ]

    def read_counter(self) -> int:
        """Return the device's write counter, checking the reply's MAC."""
        nonce = os.urandom(NONCE_SIZE)
        cmd = RpmbPacket(nonce=nonce, req_resp=RpmbRequest.GET_COUNTER)
        (res,) = self._send(b"", cmd.to_bytes(), 1, False)
        mac = compute_mac(self.key, [res])
        # The device never reports an auth failure here since no key is
        # involved in the request; a MAC mismatch means our key is wrong.
        if res.result == RpmbResult.OK and not hmac.compare_digest(res.key_mac, mac):
            raise RpmbError("read counter: MAC mismatch", RpmbResult.AUTH_FAILURE)
        _check_response(
            "read counter", RpmbResponse.GET_COUNTER, [res], mac=mac, nonce=nonce
        )
        return res.write_counter

    def read(self, addr: int, count: int) -> bytes:
        """Read ``count`` authenticated 256 byte blocks starting at ``addr``."""
        if count < 1:
            raise ValueError("count must be at least 1")
        nonce = os.urandom(NONCE_SIZE)
        cmd = RpmbPacket(nonce=nonce, address=addr, req_resp=RpmbRequest.DATA_READ)
        responses = self._send(b"", cmd.to_bytes(), count, False)
        mac = compute_mac(self.key, responses)
        _check_response(
            "read data",
            RpmbResponse.DATA_READ,
            responses,
            mac=mac,
            nonce=nonce,
            address=addr,
        )
        return b"".join(res.data for res in responses)

    def write(self, data: bytes, addr: int, count: int, sync: bool = False) -> None:
        """Write ``count`` 256 byte blocks from ``data`` starting at ``addr``."""
        if count < 1:
            raise ValueError("count must be at least 1")
        if len(data) != count * DATA_SIZE:
            raise ValueError(
                f"data must be {count * DATA_SIZE} bytes for {count} blocks"
            )
        if not self.write_counter:
            self.write_counter = self.read_counter()
        self._write_data(bytes(data), addr, count, sync)

    def _write_data(self, data: bytes, addr: int, count: int, sync: bool) -> None:
        cmds = [
            RpmbPacket(
                data=data[i * DATA_SIZE : (i + 1) * DATA_SIZE],
                write_counter=self.write_counter,
                address=addr,
                block_count=count,
                req_resp=RpmbRequest.DATA_WRITE,
            )
            for i in range(count)
        ]
        cmds[-1].key_mac = compute_mac(self.key, cmds)
        result_cmd = RpmbPacket(req_resp=RpmbRequest.RESULT_READ)
        (res,) = self._send(
            b"".join(cmd.to_bytes() for cmd in cmds), result_cmd.to_bytes(), 1, sync
        )
        mac = compute_mac(self.key, [res])
        try:
            _check_response(
                "write data", RpmbResponse.DATA_WRITE, [res], mac=mac, address=addr
            )
        except RpmbError:
            if res.result == RpmbResult.COUNT_FAILURE:
                self.write_counter = 0  # forces a re-read on the next write
            raise
        self.write_counter = (self.write_counter + 1) & 0xFFFFFFFF

    def program_key(self) -> None:
        """Program this object's key into the device."""
        cmd = RpmbPacket(
            key_mac=self.key, block_count=1, req_resp=RpmbRequest.PROGRAM_KEY
        )
        result_cmd = RpmbPacket(req_resp=RpmbRequest.RESULT_READ)
        (res,) = self._send(cmd.to_bytes(), result_cmd.to_bytes(), 1, False)
        if res.result != RpmbResult.OK:
            raise RpmbError(f"program key: bad result 0x{res.result:x}", res.result)