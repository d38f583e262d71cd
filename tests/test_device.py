import pytest

from rpmbfs.device import BlockDevice, MemoryBlockDevice


def test_base_class_is_abstract():
    with pytest.raises(TypeError):
        BlockDevice(4, 256)


def test_new_device_reads_zero():
    dev = MemoryBlockDevice(4, 256)
    assert dev.read_block(3) == bytes(256)


def test_write_read_round_trip():
    dev = MemoryBlockDevice(8, 64)
    payload = bytes(range(64))
    dev.write_block(5, payload)
    assert dev.read_block(5) == payload
    assert dev.read_block(4) == bytes(64)


def test_short_write_keeps_rest_of_block():
    dev = MemoryBlockDevice(2, 16)
    dev.write_block(0, b"\xff" * 16)
    dev.write_block(0, b"ab")
    assert dev.read_block(0) == b"ab" + b"\xff" * 14


def test_read_returns_copy():
    dev = MemoryBlockDevice(2, 16)
    data = dev.read_block(1)
    dev.write_block(1, b"x" * 16)
    assert data == bytes(16)


@pytest.mark.parametrize("block", [-1, 4, 100])
def test_out_of_range(block):
    dev = MemoryBlockDevice(4, 32)
    with pytest.raises(IndexError):
        dev.read_block(block)
    with pytest.raises(IndexError):
        dev.write_block(block, b"x")


def test_oversized_write_rejected():
    dev = MemoryBlockDevice(4, 32)
    with pytest.raises(ValueError):
        dev.write_block(0, bytes(33))


def test_non_tamper_detecting_requires_full_mac():
    with pytest.raises(ValueError):
        MemoryBlockDevice(4, 256, block_num_size=2, mac_size=2)
    dev = MemoryBlockDevice(4, 256, block_num_size=2, mac_size=2, tamper_detecting=True)
    assert (dev.block_num_size, dev.mac_size, dev.tamper_detecting) == (2, 2, True)


def test_geometry_attributes():
    dev = MemoryBlockDevice(256, 2048)
    assert dev.block_count == 256
    assert dev.block_size == 2048
    assert dev.block_num_size == 8
    assert dev.mac_size == 16