# rpmbfs

Pieces of a small tamper-resistant file system that lives on an eMMC
Replay Protected Memory Block (RPMB) partition or on any block device:
the RPMB authenticated-access protocol, a block device abstraction, and
the on-disk super block together with mounting.

## Modules

### `rpmbfs.blockrange`

`BlockRange(start, end)` is a frozen, half-open range of block numbers;
`BlockRange()` is the empty range `[0, 0)`. A range with `end < start`
raises `ValueError`.

- `BlockRange.single(block)` – a range holding one block.
- `is_empty()`, `contains(block)`, `overlaps(other)`.
- `starts_before(other)` – true if this range starts lower than `other`,
  where an empty range counts as starting at infinity.
- `contains_range(sub_range)` – true if every block of `sub_range` is in
  this range; an empty `sub_range` raises `ValueError`.

### `rpmbfs.device`

`BlockDevice` is an abstract base class describing a device:
`block_count`, `block_size`, `block_num_size` (bytes used to store a
block number, 1–8), `mac_size` (bytes used to store a mac, 1–16) and
`tamper_detecting`. A device that is not tamper detecting must use a
16 byte mac. Subclasses implement `read_block(block)` and
`write_block(block, data)`.

`MemoryBlockDevice` keeps its blocks in memory, all zero at first.
Reading or writing a block outside the device raises `IndexError`;
writing more than `block_size` bytes raises `ValueError`. Shorter writes
replace only the start of the block.

### `rpmbfs.rpmb`

- `RpmbPacket` – one 512 byte RPMB frame with `key_mac`, `data` (256
  bytes), `nonce`, `write_counter`, `address`, `block_count`, `result`
  and `req_resp`; `to_bytes()` and `RpmbPacket.from_bytes(data)` convert
  to and from the big-endian wire form.
- `compute_mac(key, packets)` – HMAC-SHA256 over the part of each frame
  from `data` to its end.
- `RpmbResult` – the device's result codes.
- `Rpmb(transport, key)` – authenticated operations with a 32 byte key:
  - `read_counter()` returns the device's write counter;
  - `read(addr, count)` returns `count * 256` bytes;
  - `write(data, addr, count, sync=False)` writes `count` blocks of 256
    bytes, reading the write counter first when it is not yet known;
  - `program_key()` programs the key into the device.

The transport is any callable
`transport(reliable_write, write, read_size, sync) -> bytes`: it sends
the reliable-write frames and then the plain write frames, and returns
exactly `read_size` bytes of reply frames.

Every failure raises `RpmbError`, whose `result` attribute holds the
result code where there is one; an address failure raises its subclass
`RpmbAddressError`. A reply whose MAC does not match raises `RpmbError`
with result `RpmbResult.AUTH_FAILURE`. When a write fails with
`RpmbResult.COUNT_FAILURE`, the cached write counter is cleared so the
next write reads it again.

### `rpmbfs.superblock`

- `BlockMac(block, mac)` – a block number and the mac of its contents;
  block 0 means "no block" (`is_valid()` is false). `pack(block_num_size,
  mac_size)` writes the block number little endian followed by the mac;
  `BlockMac.unpack(data, block_num_size, mac_size)` reads it back.
- `SuperBlock` – the 128 byte super block. `pack()` and
  `SuperBlock.unpack(data)` convert to and from the on-disk form, and
  `is_valid_for(dev)` checks it against a device. A super block from a
  newer file system version counts as valid so that it is found rather
  than overwritten.
- `use_new_super(dev, new_super, index, old_super)` – whether a super
  block read from slot `index` should replace `old_super`: it must be
  valid, stored in the slot its version selects and exactly one version
  newer.
- `mount(dev, super_dev=None, clear=False)` – reads super blocks 0 and 1
  of `super_dev` (default `dev`), picks the newest usable one and returns
  a `MountedFs`. With no usable super block, or with `clear`, it returns
  an empty file system whose free blocks are `free_initial_range`.
  `FsInitError` is raised if `super_dev` has blocks smaller than 128 bytes
  or fewer than two blocks, if a super block cannot be read, or if the
  chosen super block is from a newer file system version (even with
  `clear`).
- `MountedFs.write_super(free, files)` – writes the next super block
  version, holding the new free-set and file-tree roots, to its slot and
  makes those roots the mounted state.

## Example

```python
from rpmbfs.device import MemoryBlockDevice
from rpmbfs.superblock import BlockMac, mount

dev = MemoryBlockDevice(block_count=256, block_size=256,
                        block_num_size=8, mac_size=16,
                        tamper_detecting=True)

fs = mount(dev, dev, clear=True)          # empty file system
fs.write_super(BlockMac(block=5), BlockMac(block=6))

fs = mount(dev, dev)                      # finds the super block just written
assert fs.files_root.block == 6
```

## What this package does not do

The package stops at the super block. It has no block allocator, no
free-set or file trees, no block cache, no encryption of block contents,
no transactions and no files: the `free` and `files` roots in a super
block are stored and returned as given, and nothing here walks or
updates what they point to. There is no transport to real hardware
either; `Rpmb` talks only through the callable you pass it.

## Installation

```
pip install .
```

Python 3.10 or later is required; there are no third-party dependencies.

## Running the tests

```
pip install .[test]
pytest
```