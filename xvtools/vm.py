"""Sv39 page tables over a simulated physical memory.

Page-table pages are ordinary physical pages holding 512 little-endian
64-bit entries.  Kernel panics are raised as :class:`KernelPanic`, running
out of physical pages as :class:`OutOfMemory`, and bad user addresses in
copies between kernel and user space as :class:`BadAddress`.
"""

from __future__ import annotations

import struct

from xvtools.layout import (
    KERNBASE,
    MAXVA,
    PGSHIFT,
    PGSIZE,
    PHYSTOP,
    PLIC,
    TRAMPOLINE,
    UART0,
    VIRTIO0,
    kstack,
    pgrounddown,
    pgroundup,
)

PTE_V = 1 << 0
PTE_R = 1 << 1
PTE_W = 1 << 2
PTE_X = 1 << 3
PTE_U = 1 << 4

PXMASK = 0x1FF
PTES_PER_PAGE = 512
_PTE_SIZE = 8
_TABLE = struct.Struct("<512Q")


class KernelPanic(RuntimeError):
    """An invariant of the kernel was violated."""


class OutOfMemory(MemoryError):
    """No free physical page is left."""


class BadAddress(ValueError):
    """A user virtual address is not mapped with the needed permissions."""


def px(level: int, va: int) -> int:
    """Index into the page-table page at ``level`` for ``va``."""
    return (va >> (PGSHIFT + 9 * level)) & PXMASK


def pte2pa(pte: int) -> int:
    """Physical address held in a page-table entry."""
    return (pte >> 10) << 12


def pa2pte(pa: int) -> int:
    """Page-table entry bits for physical address ``pa``, without flags."""
    return (pa >> 12) << 10


def pte_flags(pte: int) -> int:
    """Flag bits of a page-table entry."""
    return pte & 0x3FF


class PhysicalMemory:
    """``npages`` pages of RAM starting at ``base`` with a page allocator."""

    def __init__(self, base: int, npages: int) -> None:
        if base % PGSIZE:
            raise ValueError("base must be page aligned")
        if npages < 0:
            raise ValueError("npages must not be negative")
        self.base = base
        self.end = base + npages * PGSIZE
        self._ram = bytearray(npages * PGSIZE)
        self._free = [base + i * PGSIZE for i in range(npages)]
        self._free_set = set(self._free)

    @property
    def free_count(self) -> int:
        """Number of pages not currently allocated."""
        return len(self._free)

    def kalloc(self) -> int:
        """Allocate one page and return its physical address."""
        if not self._free:
            raise OutOfMemory("no free physical pages")
        pa = self._free.pop()
        self._free_set.discard(pa)
        return pa

    def kfree(self, pa: int) -> None:
        """Return the page at ``pa`` to the allocator."""
        if pa % PGSIZE or not self.base <= pa < self.end:
            raise KernelPanic("kfree")
        if pa in self._free_set:
            raise KernelPanic("kfree: page already free")
        self._free.append(pa)
        self._free_set.add(pa)

    def _offset(self, pa: int, n: int) -> int:
        if n < 0 or pa < self.base or pa + n > self.end:
            raise KernelPanic(f"physical address {pa:#x} out of range")
        return pa - self.base

    def read(self, pa: int, n: int) -> bytes:
        """Read ``n`` bytes starting at ``pa``."""
        off = self._offset(pa, n)
        return bytes(self._ram[off:off + n])

    def write(self, pa: int, data: bytes) -> None:
        """Write ``data`` starting at ``pa``."""
        off = self._offset(pa, len(data))
        self._ram[off:off + len(data)] = data

    def read_pte(self, addr: int) -> int:
        """Read the 64-bit entry at ``addr``."""
        off = self._offset(addr, _PTE_SIZE)
        return int.from_bytes(self._ram[off:off + _PTE_SIZE], "little")

    def write_pte(self, addr: int, value: int) -> None:
        """Store the 64-bit entry ``value`` at ``addr``."""
        off = self._offset(addr, _PTE_SIZE)
        self._ram[off:off + _PTE_SIZE] = (value & 0xFFFFFFFFFFFFFFFF).to_bytes(
            _PTE_SIZE, "little"
        )


class AddressSpace:
    """A page table rooted in a freshly allocated, zeroed page."""

    def __init__(self, mem: PhysicalMemory) -> None:
        self.mem = mem
        self.root = mem.kalloc()
        self._zero(self.root)

    def _zero(self, pa: int) -> None:
        self.mem.write(pa, bytes(PGSIZE))

    def walk(self, va: int, alloc: bool) -> int | None:
        """Physical address of the leaf entry for ``va``.

        Missing page-table pages are created when ``alloc`` is true;
        otherwise, or when memory runs out, None is returned.
        """
        if va >= MAXVA:
            raise KernelPanic("walk")
        mem = self.mem
        pagetable = self.root
        for level in (2, 1):
            addr = pagetable + px(level, va) * _PTE_SIZE
            pte = mem.read_pte(addr)
            if pte & PTE_V:
                pagetable = pte2pa(pte)
                continue
            if not alloc:
                return None
            try:
                pagetable = mem.kalloc()
            except OutOfMemory:
                return None
            self._zero(pagetable)
            mem.write_pte(addr, pa2pte(pagetable) | PTE_V)
        return pagetable + px(0, va) * _PTE_SIZE

    def walkaddr(self, va: int) -> int | None:
        """Physical page address of user page ``va``, or None if not mapped."""
        if va >= MAXVA:
            return None
        addr = self.walk(va, False)
        if addr is None:
            return None
        pte = self.mem.read_pte(addr)
        if not pte & PTE_V or not pte & PTE_U:
            return None
        return pte2pa(pte)

    def mappages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map ``size`` bytes at ``va`` to physical memory starting at ``pa``."""
        if va % PGSIZE:
            raise KernelPanic("mappages: va not aligned")
        if size % PGSIZE:
            raise KernelPanic("mappages: size not aligned")
        if size == 0:
            raise KernelPanic("mappages: size")
        last = va + size - PGSIZE
        a = va
        while True:
            addr = self.walk(a, True)
            if addr is None:
                raise OutOfMemory("mappages: no memory for page table")
            if self.mem.read_pte(addr) & PTE_V:
                raise KernelPanic("mappages: remap")
            self.mem.write_pte(addr, pa2pte(pa) | perm | PTE_V)
            if a == last:
                break
            a += PGSIZE
            pa += PGSIZE

    def kvmmap(self, va: int, pa: int, sz: int, perm: int) -> None:
        """Add a kernel mapping; running out of memory is a panic."""
        try:
            self.mappages(va, sz, pa, perm)
        except OutOfMemory:
            raise KernelPanic("kvmmap") from None

    def uvmunmap(self, va: int, npages: int, do_free: bool) -> None:
        """Remove ``npages`` mappings from ``va``, freeing the pages if asked."""
        if va % PGSIZE:
            raise KernelPanic("uvmunmap: not aligned")
        for a in range(va, va + npages * PGSIZE, PGSIZE):
            addr = self.walk(a, False)
            if addr is None:
                raise KernelPanic("uvmunmap: walk")
            pte = self.mem.read_pte(addr)
            if not pte & PTE_V:
                continue
            if pte_flags(pte) == PTE_V:
                raise KernelPanic("uvmunmap: not a leaf")
            if do_free:
                self.mem.kfree(pte2pa(pte))
            self.mem.write_pte(addr, 0)

    def uvmfirst(self, src: bytes) -> None:
        """Load ``src``, shorter than a page, at virtual address zero."""
        if len(src) >= PGSIZE:
            raise KernelPanic("uvmfirst: more than a page")
        page = self.mem.kalloc()
        self._zero(page)
        self.mappages(0, PGSIZE, page, PTE_W | PTE_R | PTE_X | PTE_U)
        self.mem.write(page, bytes(src))

    def uvmalloc(self, oldsz: int, newsz: int, xperm: int) -> int:
        """Grow user memory from ``oldsz`` to ``newsz``; return the new size."""
        if newsz < oldsz:
            return oldsz
        oldsz = pgroundup(oldsz)
        for a in range(oldsz, newsz, PGSIZE):
            try:
                page = self.mem.kalloc()
            except OutOfMemory:
                self.uvmdealloc(a, oldsz)
                raise
            self._zero(page)
            try:
                self.mappages(a, PGSIZE, page, PTE_R | PTE_U | xperm)
            except OutOfMemory:
                self.mem.kfree(page)
                self.uvmdealloc(a, oldsz)
                raise
        return newsz

    def uvmdealloc(self, oldsz: int, newsz: int) -> int:
        """Shrink user memory from ``oldsz`` to ``newsz``; return the new size."""
        if newsz >= oldsz:
            return oldsz
        if pgroundup(newsz) < pgroundup(oldsz):
            npages = (pgroundup(oldsz) - pgroundup(newsz)) // PGSIZE
            self.uvmunmap(pgroundup(newsz), npages, True)
        return newsz

    def _freewalk(self, pagetable: int) -> None:
        ptes = _TABLE.unpack(self.mem.read(pagetable, PGSIZE))
        for i, pte in enumerate(ptes):
            if pte & PTE_V and not pte & (PTE_R | PTE_W | PTE_X):
                self._freewalk(pte2pa(pte))
                self.mem.write_pte(pagetable + i * _PTE_SIZE, 0)
            elif pte & PTE_V:
                raise KernelPanic("freewalk: leaf")
        self.mem.kfree(pagetable)

    def freewalk(self) -> None:
        """Free every page-table page; leaf mappings must already be gone."""
        self._freewalk(self.root)

    def uvmfree(self, sz: int) -> None:
        """Free ``sz`` bytes of user memory, then the page table itself."""
        if sz > 0:
            self.uvmunmap(0, pgroundup(sz) // PGSIZE, True)
        self.freewalk()

    def uvmcopy(self, new: AddressSpace, sz: int) -> None:
        """Copy the first ``sz`` bytes of memory and mappings into ``new``."""
        i = 0
        try:
            for i in range(0, sz, PGSIZE):
                addr = self.walk(i, False)
                if addr is None:
                    raise KernelPanic("uvmcopy: pte should exist")
                pte = self.mem.read_pte(addr)
                if not pte & PTE_V:
                    continue
                page = new.mem.kalloc()
                new.mem.write(page, self.mem.read(pte2pa(pte), PGSIZE))
                try:
                    new.mappages(i, PGSIZE, page, pte_flags(pte))
                except OutOfMemory:
                    new.mem.kfree(page)
                    raise
        except OutOfMemory:
            new.uvmunmap(0, i // PGSIZE, True)
            raise

    def uvmclear(self, va: int) -> None:
        """Remove user access to the page at ``va``."""
        addr = self.walk(va, False)
        if addr is None:
            raise KernelPanic("uvmclear")
        self.mem.write_pte(addr, self.mem.read_pte(addr) & ~PTE_U)

    def copyout(self, dstva: int, data: bytes) -> None:
        """Copy ``data`` to user virtual address ``dstva``."""
        data = bytes(data)
        pos = 0
        while pos < len(data):
            va0 = pgrounddown(dstva)
            if va0 >= MAXVA:
                raise BadAddress(f"copyout: {dstva:#x}")
            addr = self.walk(va0, False)
            pte = 0 if addr is None else self.mem.read_pte(addr)
            needed = PTE_V | PTE_U | PTE_W
            if pte & needed != needed:
                raise BadAddress(f"copyout: {dstva:#x}")
            n = min(PGSIZE - (dstva - va0), len(data) - pos)
            self.mem.write(pte2pa(pte) + (dstva - va0), data[pos:pos + n])
            pos += n
            dstva = va0 + PGSIZE

    def copyin(self, srcva: int, n: int) -> bytes:
        """Copy ``n`` bytes from user virtual address ``srcva``."""
        out = bytearray()
        while n > 0:
            va0 = pgrounddown(srcva)
            pa0 = self.walkaddr(va0)
            if pa0 is None:
                raise BadAddress(f"copyin: {srcva:#x}")
            chunk = min(PGSIZE - (srcva - va0), n)
            out += self.mem.read(pa0 + (srcva - va0), chunk)
            n -= chunk
            srcva = va0 + PGSIZE
        return bytes(out)

    def copyinstr(self, srcva: int, max: int) -> bytes:
        """Copy a NUL-terminated string of fewer than ``max`` bytes from user space.

        The terminating NUL is not included in the result.
        """
        out = bytearray()
        while max > 0:
            va0 = pgrounddown(srcva)
            pa0 = self.walkaddr(va0)
            if pa0 is None:
                raise BadAddress(f"copyinstr: {srcva:#x}")
            n = min(PGSIZE - (srcva - va0), max)
            chunk = self.mem.read(pa0 + (srcva - va0), n)
            nul = chunk.find(0)
            if nul >= 0:
                out += chunk[:nul]
                return bytes(out)
            out += chunk
            max -= n
            srcva = va0 + PGSIZE
        raise BadAddress("copyinstr: string not terminated")


def kvmmake(mem: PhysicalMemory, etext: int, trampoline: int, nproc: int) -> AddressSpace:
    """Build the kernel's direct-map page table.

    ``etext`` is the end of kernel code, ``trampoline`` the physical address
    of the trampoline page, and ``nproc`` the number of kernel stacks.
    """
    try:
        kpgtbl = AddressSpace(mem)
    except OutOfMemory:
        raise KernelPanic("kvmmake") from None
    kpgtbl.kvmmap(UART0, UART0, PGSIZE, PTE_R | PTE_W)
    kpgtbl.kvmmap(VIRTIO0, VIRTIO0, PGSIZE, PTE_R | PTE_W)
    kpgtbl.kvmmap(PLIC, PLIC, 0x4000000, PTE_R | PTE_W)
    kpgtbl.kvmmap(KERNBASE, KERNBASE, etext - KERNBASE, PTE_R | PTE_X)
    kpgtbl.kvmmap(etext, etext, PHYSTOP - etext, PTE_R | PTE_W)
    kpgtbl.kvmmap(TRAMPOLINE, trampoline, PGSIZE, PTE_R | PTE_X)
    for p in range(nproc):
        try:
            stack = mem.kalloc()
        except OutOfMemory:
            raise KernelPanic("kalloc") from None
        kpgtbl.kvmmap(kstack(p), stack, PGSIZE, PTE_R | PTE_W)
    return kpgtbl