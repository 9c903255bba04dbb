"""Virtio block-device definitions: MMIO registers, rings and requests.

The ring and request structures are laid out as the device sees them in
memory, little-endian with natural alignment, and can be packed to and
unpacked from bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntFlag

# MMIO control registers, as offsets from the device base.
VIRTIO_MMIO_MAGIC_VALUE = 0x000
VIRTIO_MMIO_VERSION = 0x004
VIRTIO_MMIO_DEVICE_ID = 0x008
VIRTIO_MMIO_VENDOR_ID = 0x00C
VIRTIO_MMIO_DEVICE_FEATURES = 0x010
VIRTIO_MMIO_DRIVER_FEATURES = 0x020
VIRTIO_MMIO_QUEUE_SEL = 0x030
VIRTIO_MMIO_QUEUE_NUM_MAX = 0x034
VIRTIO_MMIO_QUEUE_NUM = 0x038
VIRTIO_MMIO_QUEUE_READY = 0x044
VIRTIO_MMIO_QUEUE_NOTIFY = 0x050
VIRTIO_MMIO_INTERRUPT_STATUS = 0x060
VIRTIO_MMIO_INTERRUPT_ACK = 0x064
VIRTIO_MMIO_STATUS = 0x070
VIRTIO_MMIO_QUEUE_DESC_LOW = 0x080
VIRTIO_MMIO_QUEUE_DESC_HIGH = 0x084
VIRTIO_MMIO_DRIVER_DESC_LOW = 0x090
VIRTIO_MMIO_DRIVER_DESC_HIGH = 0x094
VIRTIO_MMIO_DEVICE_DESC_LOW = 0x0A0
VIRTIO_MMIO_DEVICE_DESC_HIGH = 0x0A4

# Device feature bit numbers.
VIRTIO_BLK_F_RO = 5
VIRTIO_BLK_F_SCSI = 7
VIRTIO_BLK_F_CONFIG_WCE = 11
VIRTIO_BLK_F_MQ = 12
VIRTIO_F_ANY_LAYOUT = 27
VIRTIO_RING_F_INDIRECT_DESC = 28
VIRTIO_RING_F_EVENT_IDX = 29

# Number of descriptors; a power of two.
NUM = 8

VIRTIO_BLK_T_IN = 0
VIRTIO_BLK_T_OUT = 1

BLOCK_SIZE = 1024


class Status(IntFlag):
    """Bits of the device status register."""

    ACKNOWLEDGE = 1
    DRIVER = 2
    DRIVER_OK = 4
    FEATURES_OK = 8


class DescFlags(IntFlag):
    """Descriptor flags."""

    NEXT = 1
    WRITE = 2


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) != layout.size:
        raise ValueError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack(data)


_DESC = struct.Struct("<QIHH")
_AVAIL = struct.Struct(f"<HH{NUM}HH")
_USED_ELEM = struct.Struct("<II")
_USED_HEAD = struct.Struct("<HH")
_BLK_REQ = struct.Struct("<IIQ")


@dataclass
class VirtqDesc:
    """One descriptor: a buffer address, its length, flags and chain link."""

    addr: int = 0
    len: int = 0
    flags: int = 0
    next: int = 0

    SIZE = _DESC.size

    def pack(self) -> bytes:
        return _DESC.pack(self.addr, self.len, int(self.flags), self.next)

    @classmethod
    def unpack(cls, data: bytes) -> VirtqDesc:
        addr, length, flags, nxt = _unpack(_DESC, data, "descriptor")
        return cls(addr, length, DescFlags(flags), nxt)


@dataclass
class VirtqAvail:
    """The available ring: descriptor chain heads offered to the device."""

    flags: int = 0
    idx: int = 0
    ring: tuple[int, ...] = (0,) * NUM
    unused: int = 0

    SIZE = _AVAIL.size

    def pack(self) -> bytes:
        if len(self.ring) != NUM:
            raise ValueError(f"ring must have {NUM} entries")
        return _AVAIL.pack(self.flags, self.idx, *self.ring, self.unused)

    @classmethod
    def unpack(cls, data: bytes) -> VirtqAvail:
        flags, idx, *rest = _unpack(_AVAIL, data, "available ring")
        return cls(flags, idx, tuple(rest[:NUM]), rest[NUM])


@dataclass
class VirtqUsedElem:
    """A completed chain: its head descriptor and the bytes written."""

    id: int = 0
    len: int = 0

    SIZE = _USED_ELEM.size

    def pack(self) -> bytes:
        return _USED_ELEM.pack(self.id, self.len)

    @classmethod
    def unpack(cls, data: bytes) -> VirtqUsedElem:
        return cls(*_unpack(_USED_ELEM, data, "used element"))


@dataclass
class VirtqUsed:
    """The used ring, through which the device reports completions."""

    flags: int = 0
    idx: int = 0
    ring: tuple[VirtqUsedElem, ...] = field(
        default_factory=lambda: tuple(VirtqUsedElem() for _ in range(NUM))
    )

    SIZE = _USED_HEAD.size + NUM * _USED_ELEM.size

    def pack(self) -> bytes:
        if len(self.ring) != NUM:
            raise ValueError(f"ring must have {NUM} entries")
        return _USED_HEAD.pack(self.flags, self.idx) + b"".join(
            elem.pack() for elem in self.ring
        )

    @classmethod
    def unpack(cls, data: bytes) -> VirtqUsed:
        if len(data) != cls.SIZE:
            raise ValueError(f"used ring needs {cls.SIZE} bytes, got {len(data)}")
        flags, idx = _USED_HEAD.unpack_from(data)
        ring = tuple(
            VirtqUsedElem(*_USED_ELEM.unpack_from(data, _USED_HEAD.size + k * _USED_ELEM.size))
            for k in range(NUM)
        )
        return cls(flags, idx, ring)


@dataclass
class VirtioBlkReq:
    """Header of a block request, followed by the data and a status byte."""

    type: int = VIRTIO_BLK_T_IN
    reserved: int = 0
    sector: int = 0

    SIZE = _BLK_REQ.size

    def pack(self) -> bytes:
        return _BLK_REQ.pack(self.type, self.reserved, self.sector)

    @classmethod
    def unpack(cls, data: bytes) -> VirtioBlkReq:
        return cls(*_unpack(_BLK_REQ, data, "block request"))


@dataclass
class Buf:
    """A cached disk block."""

    valid: bool = False
    disk: bool = False
    dev: int = 0
    blockno: int = 0
    refcnt: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BLOCK_SIZE))