import pytest

from rpmbfs.blockrange import BlockRange


def test_default_is_empty():
    r = BlockRange()
    assert r.is_empty()
    assert (r.start, r.end) == (0, 0)


def test_invalid_range_rejected():
    with pytest.raises(ValueError):
        BlockRange(5, 4)


def test_single():
    r = BlockRange.single(7)
    assert r == BlockRange(7, 8)
    assert r.contains(7)
    assert not r.contains(6)
    assert not r.contains(8)
    assert not r.is_empty()


@pytest.mark.parametrize(
    "block,expected", [(1, False), (2, True), (5, True), (6, False)]
)
def test_contains(block, expected):
    assert BlockRange(2, 6).contains(block) is expected


def test_empty_contains_nothing():
    r = BlockRange(3, 3)
    assert r.is_empty()
    assert not r.contains(3)


def test_starts_before():
    assert BlockRange(1, 2).starts_before(BlockRange(2, 3))
    assert not BlockRange(2, 3).starts_before(BlockRange(1, 2))
    assert not BlockRange(2, 3).starts_before(BlockRange(2, 5))


def test_starts_before_treats_empty_as_infinite():
    assert BlockRange(100, 200).starts_before(BlockRange())
    assert not BlockRange().starts_before(BlockRange(100, 200))
    assert not BlockRange().starts_before(BlockRange())


def test_contains_range():
    outer = BlockRange(10, 20)
    assert outer.contains_range(BlockRange(10, 20))
    assert outer.contains_range(BlockRange(12, 13))
    assert not outer.contains_range(BlockRange(15, 21))
    assert not outer.contains_range(BlockRange(9, 12))


def test_contains_range_rejects_empty_sub_range():
    with pytest.raises(ValueError):
        BlockRange(0, 10).contains_range(BlockRange(5, 5))


def test_equality_and_hash():
    assert BlockRange(1, 3) == BlockRange(1, 3)
    assert len({BlockRange(1, 3), BlockRange(1, 3), BlockRange(1, 4)}) == 2