import pytest

from xvtools.virtio import (
    NUM,
    BLOCK_SIZE,
    VIRTIO_BLK_T_OUT,
    Buf,
    DescFlags,
    Status,
    VirtioBlkReq,
    VirtqAvail,
    VirtqDesc,
    VirtqUsed,
    VirtqUsedElem,
)


def test_combined_bits_are_packed():
    d = VirtqDesc(addr=0, len=0, flags=DescFlags.NEXT | DescFlags.WRITE, next=0)
    assert d.pack()[12:14] == (3).to_bytes(2, "little")
    r = VirtioBlkReq(type=Status.ACKNOWLEDGE | Status.DRIVER, reserved=int(Status.FEATURES_OK), sector=0)
    back = VirtioBlkReq.unpack(r.pack())
    assert back.type == 3
    assert back.reserved == 8


def test_desc_round_trip():
    d = VirtqDesc(addr=0x80001000, len=512, flags=DescFlags.NEXT | DescFlags.WRITE, next=2)
    data = d.pack()
    assert len(data) == VirtqDesc.SIZE
    assert VirtqDesc.unpack(data) == d


def test_desc_wire_bytes():
    d = VirtqDesc(addr=1, len=2, flags=DescFlags.NEXT, next=3)
    assert d.pack() == (
        (1).to_bytes(8, "little") + (2).to_bytes(4, "little")
        + (1).to_bytes(2, "little") + (3).to_bytes(2, "little")
    )


def test_desc_unpack_wrong_length():
    with pytest.raises(ValueError):
        VirtqDesc.unpack(b"\0" * 3)


def test_avail_round_trip():
    a = VirtqAvail(flags=0, idx=5, ring=tuple(range(NUM)), unused=7)
    data = a.pack()
    assert len(data) == VirtqAvail.SIZE
    assert VirtqAvail.unpack(data) == a


def test_avail_ring_length_checked():
    with pytest.raises(ValueError):
        VirtqAvail(ring=(1, 2)).pack()


def test_used_elem_round_trip():
    e = VirtqUsedElem(id=4, len=1024)
    assert VirtqUsedElem.unpack(e.pack()) == e


def test_used_round_trip():
    ring = tuple(VirtqUsedElem(id=k, len=k * 10) for k in range(NUM))
    u = VirtqUsed(flags=0, idx=3, ring=ring)
    data = u.pack()
    assert len(data) == VirtqUsed.SIZE
    assert VirtqUsed.unpack(data) == u


def test_used_unpack_wrong_length():
    with pytest.raises(ValueError):
        VirtqUsed.unpack(b"\0" * 5)


def test_blk_req_round_trip():
    r = VirtioBlkReq(type=VIRTIO_BLK_T_OUT, reserved=0, sector=42)
    data = r.pack()
    assert len(data) == VirtioBlkReq.SIZE
    assert VirtioBlkReq.unpack(data) == r


def test_buf_data_sized_to_block():
    b = Buf(dev=1, blockno=9)
    assert len(b.data) == BLOCK_SIZE
    assert not b.valid