"""A first-fit free-list allocator over a simulated break-extended heap.

Blocks are measured in header units.  The free list is circular, kept in
address order, and includes a zero-sized base header below the heap.
Addresses are byte addresses; a user pointer sits right after its header.
"""

from __future__ import annotations

from dataclasses import dataclass

HEADER_SIZE = 16
MIN_UNITS = 4096

_BASE = 0
_HEAP_START = 1


class OutOfMemory(MemoryError):
    """The heap cannot grow enough to satisfy a request."""


@dataclass
class _Header:
    ptr: int
    size: int


class Heap:
    """Allocator whose heap may grow to at most ``limit`` bytes."""

    def __init__(self, limit: int) -> None:
        if limit < 0:
            raise ValueError("limit must not be negative")
        self.limit = limit
        self._headers: dict[int, _Header] = {}
        self._freep: int | None = None
        self._brk = _HEAP_START
        self._allocated: set[int] = set()

    def malloc(self, nbytes: int) -> int:
        """Allocate ``nbytes`` bytes and return the block's address."""
        if nbytes < 0:
            raise ValueError("size must not be negative")
        nunits = (nbytes + HEADER_SIZE - 1) // HEADER_SIZE + 1
        h = self._headers
        if self._freep is None:
            h[_BASE] = _Header(_BASE, 0)
            self._freep = _BASE
        prevp = self._freep
        p = h[prevp].ptr
        while True:
            if h[p].size >= nunits:
                if h[p].size == nunits:
                    h[prevp].ptr = h[p].ptr
                else:
                    h[p].size -= nunits
                    p += h[p].size
                    h[p] = _Header(p, nunits)
                self._freep = prevp
                self._allocated.add(p)
                return (p + 1) * HEADER_SIZE
            if p == self._freep:
                grown = self._morecore(nunits)
                if grown is None:
                    raise OutOfMemory(f"cannot allocate {nbytes} bytes")
                p = grown
            prevp, p = p, h[p].ptr

    def free(self, ap: int) -> None:
        """Return a block obtained from :meth:`malloc` to the free list."""
        if ap % HEADER_SIZE:
            raise ValueError(f"address {ap:#x} was not returned by malloc")
        bp = ap // HEADER_SIZE - 1
        if bp not in self._allocated:
            raise ValueError(f"address {ap:#x} is not an allocated block")
        self._allocated.discard(bp)
        self._release(bp)

    def free_blocks(self) -> list[tuple[int, int]]:
        """Free blocks as (header address, size in bytes), in address order."""
        if self._freep is None:
            return []
        h = self._headers
        blocks = []
        p = h[_BASE].ptr
        while p != _BASE:
            blocks.append((p * HEADER_SIZE, h[p].size * HEADER_SIZE))
            p = h[p].ptr
        return sorted(blocks)

    def _morecore(self, nu: int) -> int | None:
        nu = max(nu, MIN_UNITS)
        if (self._brk - _HEAP_START + nu) * HEADER_SIZE > self.limit:
            return None
        hp = self._brk
        self._brk += nu
        self._headers[hp] = _Header(hp, nu)
        self._release(hp)
        return self._freep

    def _release(self, bp: int) -> None:
        h = self._headers
        p = self._freep
        assert p is not None
        while not (p < bp < h[p].ptr):
            if p >= h[p].ptr and (bp > p or bp < h[p].ptr):
                break
            p = h[p].ptr
        nxt = h[p].ptr
        if bp + h[bp].size == nxt:
            h[bp].size += h[nxt].size
            h[bp].ptr = h[nxt].ptr
            del h[nxt]
        else:
            h[bp].ptr = nxt
        if p + h[p].size == bp:
            h[p].size += h[bp].size
            h[p].ptr = h[bp].ptr
            del h[bp]
        else:
            h[p].ptr = bp
        self._freep = p