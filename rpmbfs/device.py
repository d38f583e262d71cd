"""Block devices that file system state is stored on."""

from __future__ import annotations

from abc import ABC, abstractmethod

_MAX_BLOCK_NUM_SIZE = 8
_MAX_MAC_SIZE = 16


class BlockDevice(ABC):
    """A device holding ``block_count`` blocks of ``block_size`` bytes.

    ``block_num_size`` and ``mac_size`` are the number of bytes used to store
    block numbers and macs. ``mac_size`` must be 16 unless the device is
    ``tamper_detecting``, meaning that data it reports as written cannot be
    modified by untrusted code.
    """

    def __init__(
        self,
        block_count: int,
        block_size: int,
        block_num_size: int = _MAX_BLOCK_NUM_SIZE,
        mac_size: int = _MAX_MAC_SIZE,
        tamper_detecting: bool = False,
    ) -> None:
        if block_count < 0:
            raise ValueError("block count must not be negative")
        if block_size <= 0:
            raise ValueError("block size must be positive")
        if not 1 <= block_num_size <= _MAX_BLOCK_NUM_SIZE:
            raise ValueError(f"invalid block number size {block_num_size}")
        if not 1 <= mac_size <= _MAX_MAC_SIZE:
            raise ValueError(f"invalid mac size {mac_size}")
        if not tamper_detecting and mac_size != _MAX_MAC_SIZE:
            raise ValueError(
                f"mac size must be {_MAX_MAC_SIZE} on a non tamper detecting device"
            )
        self.block_count = block_count
        self.block_size = block_size
        self.block_num_size = block_num_size
        self.mac_size = mac_size
        self.tamper_detecting = tamper_detecting

    def _check_block(self, block: int) -> None:
        if not 0 <= block < self.block_count:
            raise IndexError(
                f"block {block} out of range for device of {self.block_count} blocks"
            )

    @abstractmethod
    def read_block(self, block: int) -> bytes:
        """Return the ``block_size`` bytes stored in ``block``."""

    @abstractmethod
    def write_block(self, block: int, data: bytes) -> None:
        """Store ``data`` (at most ``block_size`` bytes) at the start of ``block``."""


class MemoryBlockDevice(BlockDevice):
    """A block device kept in memory, initially all zero."""

    def __init__(
        self,
        block_count: int,
        block_size: int,
        block_num_size: int = _MAX_BLOCK_NUM_SIZE,
        mac_size: int = _MAX_MAC_SIZE,
        tamper_detecting: bool = False,
    ) -> None:
        super().__init__(
            block_count, block_size, block_num_size, mac_size, tamper_detecting
        )
        self._blocks = [bytearray(block_size) for _ in range(block_count)]

    def read_block(self, block: int) -> bytes:
        self._check_block(block)
        return bytes(self._blocks[block])

    def write_block(self, block: int, data: bytes) -> None:
        self._check_block(block)
        if len(data) > self.block_size:
            raise ValueError(
                f"data of {len(data)} bytes does not fit in a {self.block_size} byte block"
            )
        self._blocks[block][: len(data)] = data