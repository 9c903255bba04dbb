"""Build a file-system image holding a root directory and the given files.

Disk layout, one block per sector:
[ boot block | superblock | log | inode blocks | free bit map | data blocks ]
All on-disk integers are little-endian.
"""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass, field
from typing import BinaryIO

from xvtools.coreutils import FileType
from xvtools.virtio import BLOCK_SIZE


def xshort(x: int) -> bytes:
    """``x`` as two little-endian bytes."""
    return (x & 0xFFFF).to_bytes(2, "little")


def xint(x: int) -> bytes:
    """``x`` as four little-endian bytes."""
    return (x & 0xFFFFFFFF).to_bytes(4, "little")


@dataclass(frozen=True)
class Geometry:
    """Sizes that fix the layout of an image."""

    bsize: int = BLOCK_SIZE
    fssize: int = 2000
    ninodes: int = 200
    nlog: int = 30
    ndirect: int = 12
    dirsiz: int = 14
    magic: int = 0x10203040
    rootino: int = 1

    @property
    def dinode_size(self) -> int:
        return 12 + 4 * (self.ndirect + 1)

    @property
    def dirent_size(self) -> int:
        return 2 + self.dirsiz

    @property
    def ipb(self) -> int:
        """Inodes per block."""
        return self.bsize // self.dinode_size

    @property
    def bpb(self) -> int:
        """Bitmap bits per block."""
        return self.bsize * 8

    @property
    def nindirect(self) -> int:
        return self.bsize // 4

    @property
    def maxfile(self) -> int:
        return self.ndirect + self.nindirect

    @property
    def nbitmap(self) -> int:
        return self.fssize // self.bpb + 1

    @property
    def ninodeblocks(self) -> int:
        return self.ninodes // self.ipb + 1

    @property
    def nmeta(self) -> int:
        """Boot, superblock, log, inode and bitmap blocks."""
        return 2 + self.nlog + self.ninodeblocks + self.nbitmap

    @property
    def nblocks(self) -> int:
        """Data blocks."""
        return self.fssize - self.nmeta


_SB = struct.Struct("<8I")


@dataclass
class Superblock:
    """Describes the layout of the image."""

    magic: int
    size: int
    nblocks: int
    ninodes: int
    nlog: int
    logstart: int
    inodestart: int
    bmapstart: int

    def pack(self) -> bytes:
        return _SB.pack(
            self.magic, self.size, self.nblocks, self.ninodes,
            self.nlog, self.logstart, self.inodestart, self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> Superblock:
        if len(data) < _SB.size:
            raise ValueError(f"superblock needs {_SB.size} bytes")
        return cls(*_SB.unpack_from(data))


_DINODE_HEAD = struct.Struct("<hhhhI")


@dataclass
class Dinode:
    """An on-disk inode."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=list)

    def pack(self) -> bytes:
        head = _DINODE_HEAD.pack(self.type, self.major, self.minor, self.nlink, self.size)
        return head + struct.pack(f"<{len(self.addrs)}I", *self.addrs)

    @classmethod
    def unpack(cls, data: bytes) -> Dinode:
        rest = len(data) - _DINODE_HEAD.size
        if rest < 0 or rest % 4:
            raise ValueError(f"bad inode size {len(data)}")
        head = _DINODE_HEAD.unpack_from(data)
        addrs = list(struct.unpack_from(f"<{rest // 4}I", data, _DINODE_HEAD.size))
        return cls(*head, addrs=addrs)


@dataclass
class Dirent:
    """A directory entry; ``size`` is the width of the name field."""

    inum: int
    name: str
    size: int = 14

    def pack(self) -> bytes:
        name = self.name.encode()[: self.size]
        return xshort(self.inum) + name.ljust(self.size, b"\0")

    @classmethod
    def unpack(cls, data: bytes) -> Dirent:
        if len(data) < 2:
            raise ValueError("directory entry too short")
        inum = int.from_bytes(data[:2], "little")
        name = bytes(data[2:]).split(b"\0", 1)[0].decode(errors="replace")
        return cls(inum, name, len(data) - 2)


def _shortname(name: str, dirsiz: int) -> str:
    if name.startswith("user/"):
        name = name[5:]
    if "/" in name:
        raise ValueError(f"file name must not contain '/': {name}")
    if name.startswith("_"):
        name = name[1:]
    if len(name.encode()) > dirsiz:
        raise ValueError(f"file name longer than {dirsiz}: {name}")
    return name


class ImageBuilder:
    """Writes a fresh image to ``stream`` and fills its root directory."""

    def __init__(self, stream: BinaryIO, geometry: Geometry | None = None) -> None:
        g = geometry or Geometry()
        if g.bsize % g.dinode_size or g.bsize % g.dirent_size:
            raise ValueError("block size must hold whole inodes and entries")
        self.stream = stream
        self.geometry = g
        self.sb = Superblock(
            magic=g.magic,
            size=g.fssize,
            nblocks=g.nblocks,
            ninodes=g.ninodes,
            nlog=g.nlog,
            logstart=2,
            inodestart=2 + g.nlog,
            bmapstart=2 + g.nlog + g.ninodeblocks,
        )
        self.freeinode = 1
        self.freeblock = g.nmeta

        zeroes = bytes(g.bsize)
        for sec in range(g.fssize):
            self.wsect(sec, zeroes)
        self.wsect(1, self.sb.pack().ljust(g.bsize, b"\0"))

        root = self.ialloc(FileType.DIR)
        if root != g.rootino:
            raise RuntimeError(f"root inode is {root}, expected {g.rootino}")
        self.rootino = root
        self.iappend(root, Dirent(root, ".", g.dirsiz).pack())
        self.iappend(root, Dirent(root, "..", g.dirsiz).pack())

    def wsect(self, sec: int, data: bytes) -> None:
        """Write one block at sector ``sec``."""
        bs = self.geometry.bsize
        if len(data) != bs:
            raise ValueError(f"sector data must be {bs} bytes")
        self.stream.seek(sec * bs)
        if self.stream.write(bytes(data)) != bs:
            raise OSError("write")

    def rsect(self, sec: int) -> bytes:
        """Read the block at sector ``sec``."""
        bs = self.geometry.bsize
        self.stream.seek(sec * bs)
        data = self.stream.read(bs)
        if len(data) != bs:
            raise OSError("read")
        return data

    def _inode_slot(self, inum: int) -> tuple[int, int]:
        g = self.geometry
        return inum // g.ipb + self.sb.inodestart, (inum % g.ipb) * g.dinode_size

    def winode(self, inum: int, din: Dinode) -> None:
        """Store ``din`` as inode ``inum``."""
        bn, off = self._inode_slot(inum)
        packed = din.pack()
        if len(packed) != self.geometry.dinode_size:
            raise ValueError("inode has the wrong number of addresses")
        block = bytearray(self.rsect(bn))
        block[off:off + len(packed)] = packed
        self.wsect(bn, bytes(block))

    def rinode(self, inum: int) -> Dinode:
        """Load inode ``inum``."""
        bn, off = self._inode_slot(inum)
        return Dinode.unpack(self.rsect(bn)[off:off + self.geometry.dinode_size])

    def ialloc(self, type: int) -> int:
        """Allocate the next inode with one link and return its number."""
        inum = self.freeinode
        self.freeinode += 1
        din = Dinode(type=int(type), nlink=1, size=0, addrs=[0] * (self.geometry.ndirect + 1))
        self.winode(inum, din)
        return inum

    def _take_block(self) -> int:
        block = self.freeblock
        self.freeblock += 1
        return block

    def iappend(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the contents of inode ``inum``."""
        g = self.geometry
        bs, nd = g.bsize, g.ndirect
        data = bytes(data)
        din = self.rinode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // bs
            if fbn >= g.maxfile:
                raise ValueError("file too large")
            if fbn < nd:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._take_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[nd] == 0:
                    din.addrs[nd] = self._take_block()
                ind = din.addrs[nd]
                indirect = list(struct.unpack(f"<{g.nindirect}I", self.rsect(ind)))
                if indirect[fbn - nd] == 0:
                    indirect[fbn - nd] = self._take_block()
                    self.wsect(ind, struct.pack(f"<{g.nindirect}I", *indirect))
                x = indirect[fbn - nd]
            n1 = min(len(data) - pos, (fbn + 1) * bs - off)
            start = off - fbn * bs
            block = bytearray(self.rsect(x))
            block[start:start + n1] = data[pos:pos + n1]
            self.wsect(x, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self.winode(inum, din)

    def balloc(self, used: int) -> None:
        """Mark the first ``used`` blocks as in use in the bitmap."""
        g = self.geometry
        if not 0 <= used < g.bpb:
            raise ValueError(f"cannot mark {used} blocks in one bitmap block")
        bits = ((1 << used) - 1).to_bytes(g.bsize, "little")
        self.wsect(self.sb.bmapstart, bits)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory and return its inode number.

        A leading ``user/`` and then a leading ``_`` are dropped from ``name``.
        """
        short = _shortname(name, self.geometry.dirsiz)
        inum = self.ialloc(FileType.FILE)
        self.iappend(self.rootino, Dirent(inum, short, self.geometry.dirsiz).pack())
        self.iappend(inum, data)
        return inum

    def finish(self) -> int:
        """Round the root directory up to whole blocks and write the bitmap.

        Returns the number of blocks in use.
        """
        bs = self.geometry.bsize
        din = self.rinode(self.rootino)
        din.size = (din.size // bs + 1) * bs
        self.winode(self.rootino, din)
        self.balloc(self.freeblock)
        return self.freeblock


def main(argv: list[str] | None = None) -> int:
    """Run the command; return its exit status."""
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        sys.stderr.write("Usage: mkfs fs.img files...\n")
        return 1
    image, *paths = argv
    g = Geometry()
    try:
        stream = open(image, "w+b")
    except OSError as e:
        sys.stderr.write(f"{image}: {e.strerror}\n")
        return 1
    with stream:
        print(
            f"nmeta {g.nmeta} (boot, super, log blocks {g.nlog} inode blocks "
            f"{g.ninodeblocks}, bitmap blocks {g.nbitmap}) blocks {g.nblocks} "
            f"total {g.fssize}"
        )
        builder = ImageBuilder(stream, g)
        for path in paths:
            _shortname(path, g.dirsiz)
            try:
                with open(path, "rb") as f:
                    data = f.read()
            except OSError as e:
                sys.stderr.write(f"{path}: {e.strerror}\n")
                return 1
            builder.add_file(path, data)
        used = builder.finish()
        print(f"balloc: first {used} blocks have been allocated")
        print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    return 0