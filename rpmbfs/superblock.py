"""Super blocks: the on-disk root of the file system state, and mounting."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field

from .blockrange import BlockRange
from .device import BlockDevice

logger = logging.getLogger(__name__)

SUPER_BLOCK_MAGIC = 0x0073797473757274
SUPER_BLOCK_FLAGS_VERSION_MASK = 0x3
SUPER_BLOCK_FLAGS_BLOCK_INDEX_MASK = 0x1
SUPER_BLOCK_FS_VERSION = 0
SUPER_BLOCK_SIZE = 128

MAX_BLOCK_NUM_SIZE = 8
MAX_MAC_SIZE = 16
IV_SIZE = 16
BLOCK_MAC_FIELD_SIZE = MAX_BLOCK_NUM_SIZE + MAX_MAC_SIZE

_SUPER = struct.Struct("<16sQIIIBBxxQ24sQ24s20xI")
assert _SUPER.size == SUPER_BLOCK_SIZE


def _field_sizes(block_num_size: int, mac_size: int) -> tuple[int, int]:
    """Sizes to decode a block mac with; out of range sizes use the maximum."""
    if 1 <= block_num_size <= MAX_BLOCK_NUM_SIZE and 1 <= mac_size <= MAX_MAC_SIZE:
        return block_num_size, mac_size
    return MAX_BLOCK_NUM_SIZE, MAX_MAC_SIZE


@dataclass(frozen=True)
class BlockMac:
    """A block number together with the mac of that block's contents.

    Block 0 never holds tree data, so ``BlockMac()`` stands for "no block".
    """

    block: int = 0
    mac: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "mac", bytes(self.mac))
        if self.block < 0:
            raise ValueError(f"negative block number {self.block}")
        if len(self.mac) > MAX_MAC_SIZE:
            raise ValueError(f"mac of {len(self.mac)} bytes is too long")

    def is_valid(self) -> bool:
        """Return True if this refers to a block."""
        return self.block != 0

    def pack(self, block_num_size: int, mac_size: int) -> bytes:
        """Return the block number (little endian) followed by the mac."""
        if not 1 <= block_num_size <= MAX_BLOCK_NUM_SIZE:
            raise ValueError(f"invalid block number size {block_num_size}")
        if not 1 <= mac_size <= MAX_MAC_SIZE:
            raise ValueError(f"invalid mac size {mac_size}")
        if self.block >= 1 << (8 * block_num_size):
            raise ValueError(
                f"block {self.block} does not fit in {block_num_size} bytes"
            )
        if len(self.mac) > mac_size:
            raise ValueError(
                f"mac of {len(self.mac)} bytes does not fit in {mac_size} bytes"
            )
        return self.block.to_bytes(block_num_size, "little") + self.mac.ljust(
            mac_size, b"\0"
        )

    @classmethod
    def unpack(cls, data: bytes, block_num_size: int, mac_size: int) -> BlockMac:
        """Parse a block mac packed with the given sizes."""
        if len(data) < block_num_size + mac_size:
            raise ValueError(
                f"need {block_num_size + mac_size} bytes, got {len(data)}"
            )
        block = int.from_bytes(data[:block_num_size], "little")
        mac = bytes(data[block_num_size : block_num_size + mac_size])
        return cls(block, mac)


@dataclass
class SuperBlock:
    """The 128 byte super block.

    ``flags`` carries the version in its two low bits and ``flags2`` must
    repeat it, so a torn write of the block is detected. ``free`` and
    ``files`` are the roots of the free set and of the file tree.
    """

    magic: int = SUPER_BLOCK_MAGIC
    flags: int = 0
    fs_version: int = SUPER_BLOCK_FS_VERSION
    block_size: int = 0
    block_num_size: int = MAX_BLOCK_NUM_SIZE
    mac_size: int = MAX_MAC_SIZE
    block_count: int = 0
    free: BlockMac = field(default_factory=BlockMac)
    free_count: int = 0
    files: BlockMac = field(default_factory=BlockMac)
    flags2: int = 0
    iv: bytes = bytes(IV_SIZE)

    def pack(self) -> bytes:
        """Return the on-disk form; reserved fields are written as zero."""
        if len(self.iv) != IV_SIZE:
            raise ValueError(f"iv must be {IV_SIZE} bytes")
        sizes = _field_sizes(self.block_num_size, self.mac_size)
        return _SUPER.pack(
            bytes(self.iv),
            self.magic,
            self.flags,
            self.fs_version,
            self.block_size,
            self.block_num_size,
            self.mac_size,
            self.block_count,
            self.free.pack(*sizes).ljust(BLOCK_MAC_FIELD_SIZE, b"\0"),
            self.free_count,
            self.files.pack(*sizes).ljust(BLOCK_MAC_FIELD_SIZE, b"\0"),
            self.flags2,
        )

    @classmethod
    def unpack(cls, data: bytes) -> SuperBlock:
        """Parse a super block from the first 128 bytes of ``data``."""
        if len(data) < SUPER_BLOCK_SIZE:
            raise ValueError(
                f"super block needs {SUPER_BLOCK_SIZE} bytes, got {len(data)}"
            )
        (
            iv,
            magic,
            flags,
            fs_version,
            block_size,
            block_num_size,
            mac_size,
            block_count,
            free,
            free_count,
            files,
            flags2,
        ) = _SUPER.unpack(bytes(data[:SUPER_BLOCK_SIZE]))
        sizes = _field_sizes(block_num_size, mac_size)
        return cls(
            magic=magic,
            flags=flags,
            fs_version=fs_version,
            block_size=block_size,
            block_num_size=block_num_size,
            mac_size=mac_size,
            block_count=block_count,
            free=BlockMac.unpack(free, *sizes),
            free_count=free_count,
            files=BlockMac.unpack(files, *sizes),
            flags2=flags2,
            iv=iv,
        )

    def is_valid_for(self, dev: BlockDevice) -> bool:
        """Return True if this super block may describe a file system on ``dev``.

        A super block from a future file system version counts as valid so
        that it is found, and then refused, rather than overwritten.
        """
        if self.magic != SUPER_BLOCK_MAGIC:
            return False
        if self.flags != self.flags2:
            logger.warning(
                "flags, 0x%x, does not match flags2, 0x%x", self.flags, self.flags2
            )
            return False
        if self.fs_version > SUPER_BLOCK_FS_VERSION:
            logger.warning("super block is from the future: 0x%x", self.fs_version)
            return True
        if self.flags & ~SUPER_BLOCK_FLAGS_VERSION_MASK:
            logger.warning("unknown flags set, 0x%x", self.flags)
            return False
        if self.block_size != dev.block_size:
            logger.warning(
                "bad block size 0x%x, expected 0x%x", self.block_size, dev.block_size
            )
            return False
        if not dev.block_num_size <= self.block_num_size <= MAX_BLOCK_NUM_SIZE:
            logger.warning("invalid block_num_size %d", self.block_num_size)
            return False
        if not dev.mac_size <= self.mac_size <= MAX_MAC_SIZE:
            logger.warning("invalid mac_size %d", self.mac_size)
            return False
        if not dev.tamper_detecting and self.mac_size != MAX_MAC_SIZE:
            logger.warning("invalid mac_size %d != %d", self.mac_size, MAX_MAC_SIZE)
            return False
        if self.block_count > dev.block_count:
            logger.warning(
                "bad block count 0x%x, expected <= 0x%x",
                self.block_count,
                dev.block_count,
            )
            return False
        return True


def use_new_super(
    dev: BlockDevice,
    new_super: SuperBlock,
    index: int,
    old_super: SuperBlock | None,
) -> bool:
    """Return True if ``new_super``, read from slot ``index``, should be used.

    It must be valid for ``dev``, stored in the slot its version selects and,
    if ``old_super`` is given, exactly one version newer than it.
    """
    if not new_super.is_valid_for(dev):
        return False
    if (new_super.flags & SUPER_BLOCK_FLAGS_BLOCK_INDEX_MASK) != index:
        logger.warning(
            "block index, 0x%x, does not match flags, 0x%x", index, new_super.flags
        )
        return False
    if old_super is None:
        return True
    delta = (new_super.flags - old_super.flags) & SUPER_BLOCK_FLAGS_VERSION_MASK
    if delta == 1:
        return True
    if delta != 3:
        logger.warning(
            "bad version delta, %d (new flags 0x%x, old flags 0x%x)",
            delta,
            new_super.flags,
            old_super.flags,
        )
    return False


class FsInitError(Exception):
    """The file system could not be mounted."""


@dataclass
class MountedFs:
    """State of a mounted file system.

    ``free_initial_range`` holds the free blocks of a newly created file
    system until the first super block is written; after that the free set is
    reached through ``free_root``.
    """

    dev: BlockDevice
    super_dev: BlockDevice
    min_block_num: int
    block_num_size: int
    mac_size: int
    reserved_count: int
    free_root: BlockMac = field(default_factory=BlockMac)
    files_root: BlockMac = field(default_factory=BlockMac)
    free_initial_range: BlockRange = field(default_factory=BlockRange)
    super_block_version: int = 0
    written_super_block_version: int = 0
    super_blocks: tuple[int, int] = (0, 1)

    def write_super(self, free: BlockMac, files: BlockMac) -> SuperBlock:
        """Write a super block with new roots in the next version's slot.

        The new roots become the mounted state and the written super block
        is returned.
        """
        version = (self.super_block_version + 1) & SUPER_BLOCK_FLAGS_VERSION_MASK
        index = version & SUPER_BLOCK_FLAGS_BLOCK_INDEX_MASK
        block = self.super_blocks[index]
        logger.debug("write super block %d, ver %d", block, version)
        super_block = SuperBlock(
            flags=version,
            fs_version=SUPER_BLOCK_FS_VERSION,
            block_size=self.dev.block_size,
            block_num_size=self.block_num_size,
            mac_size=self.mac_size,
            block_count=self.dev.block_count,
            free=free,
            free_count=0,
            files=files,
            flags2=version,
        )
        data = super_block.pack().ljust(self.super_dev.block_size, b"\0")
        self.super_dev.write_block(block, data)
        self.written_super_block_version = version
        self.super_block_version = version
        self.free_root = free
        self.files_root = files
        self.free_initial_range = BlockRange()
        return super_block


def mount(
    dev: BlockDevice, super_dev: BlockDevice | None = None, clear: bool = False
) -> MountedFs:
    """Find the newest usable super block and return the mounted state.

    ``super_dev`` defaults to ``dev``. With ``clear`` an empty file system is
    created, unless the stored super block is from a future version.
    """
    if super_dev is None:
        super_dev = dev
    if super_dev.block_size < SUPER_BLOCK_SIZE:
        raise FsInitError(
            f"unsupported block size for super_dev, "
            f"{super_dev.block_size} < {SUPER_BLOCK_SIZE}"
        )
    if super_dev.block_count < 2:
        raise FsInitError(
            f"unsupported block count for super_dev, {super_dev.block_count}"
        )
    min_block_num = 2 if super_dev is dev else 1
    super_blocks = (0, 1)

    current: SuperBlock | None = None
    for index, block in enumerate(super_blocks):
        try:
            data = super_dev.read_block(block)
        except (IndexError, OSError) as exc:
            raise FsInitError("failed to read super-block") from exc
        candidate = SuperBlock.unpack(data)
        if use_new_super(dev, candidate, index, current):
            current = candidate

    if current is not None and current.fs_version > SUPER_BLOCK_FS_VERSION:
        raise FsInitError(
            f"super block is from the future 0x{current.fs_version:x}"
        )
    if clear:
        current = None

    if current is not None:
        block_num_size = current.block_num_size
        mac_size = current.mac_size
    else:
        block_num_size = dev.block_num_size
        mac_size = dev.mac_size

    fs = MountedFs(
        dev=dev,
        super_dev=super_dev,
        min_block_num=min_block_num,
        block_num_size=block_num_size,
        mac_size=mac_size,
        # a quarter for temporary blocks plus half of what remains
        reserved_count=dev.block_count // 8 * 5,
        super_blocks=super_blocks,
    )
    if current is not None:
        fs.free_root = current.free
        fs.files_root = current.files
        fs.super_block_version = current.flags & SUPER_BLOCK_FLAGS_VERSION_MASK
        logger.info("loaded super block version %d", fs.super_block_version)
    else:
        logger.info(
            "clear requested, create empty"
            if clear
            else "no valid super-block found, create empty"
        )
        fs.free_initial_range = BlockRange(min_block_num, dev.block_count)
    return fs