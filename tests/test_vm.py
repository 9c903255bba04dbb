import pytest

from xvtools.layout import (
    KERNBASE,
    MAXVA,
    PGSIZE,
    PHYSTOP,
    TRAMPOLINE,
    UART0,
    kstack,
)
from xvtools.vm import (
    PTE_R,
    PTE_U,
    PTE_V,
    PTE_W,
    PTE_X,
    AddressSpace,
    BadAddress,
    KernelPanic,
    OutOfMemory,
    PhysicalMemory,
    kvmmake,
    pa2pte,
    pte2pa,
    pte_flags,
    px,
)

BASE = KERNBASE + 0x100000


@pytest.fixture
def mem():
    return PhysicalMemory(BASE, 64)


@pytest.fixture
def space(mem):
    return AddressSpace(mem)


@pytest.mark.parametrize("pa", [0, PGSIZE, KERNBASE, PHYSTOP - PGSIZE])
def test_pte_roundtrip(pa):
    assert pte2pa(pa2pte(pa)) == pa
    assert pte_flags(pa2pte(pa)) == 0


def test_pte_flags_extracted():
    pte = pa2pte(KERNBASE) | PTE_R | PTE_V
    assert pte_flags(pte) == PTE_R | PTE_V
    assert pte2pa(pte) == KERNBASE


def test_px_extracts_each_level():
    va = (3 << 30) | (5 << 21) | (7 << 12) | 0x123
    assert [px(2, va), px(1, va), px(0, va)] == [3, 5, 7]


def test_kalloc_until_exhausted(mem):
    pages = [mem.kalloc() for _ in range(64)]
    assert len(set(pages)) == 64
    assert all(p % PGSIZE == 0 and BASE <= p < mem.end for p in pages)
    assert mem.free_count == 0
    with pytest.raises(OutOfMemory):
        mem.kalloc()


def test_kfree_checks(mem):
    pa = mem.kalloc()
    with pytest.raises(KernelPanic):
        mem.kfree(pa + 1)
    with pytest.raises(KernelPanic):
        mem.kfree(mem.end)
    mem.kfree(pa)
    with pytest.raises(KernelPanic):
        mem.kfree(pa)


def test_memory_read_write(mem):
    pa = mem.kalloc()
    mem.write(pa + 10, b"abc")
    assert mem.read(pa + 10, 3) == b"abc"
    mem.write_pte(pa, pa2pte(pa) | PTE_V)
    assert mem.read_pte(pa) == pa2pte(pa) | PTE_V
    with pytest.raises(KernelPanic):
        mem.read(mem.end - 1, 2)


def test_new_space_takes_a_page():
    mem = PhysicalMemory(BASE, 1)
    AddressSpace(mem)
    assert mem.free_count == 0
    with pytest.raises(OutOfMemory):
        AddressSpace(mem)


def test_mappages_and_walkaddr(space, mem):
    pa = mem.kalloc()
    space.mappages(PGSIZE, PGSIZE, pa, PTE_R | PTE_U)
    assert space.walkaddr(PGSIZE) == pa
    assert space.walkaddr(PGSIZE + 100) == pa
    assert space.walkaddr(0) is None


def test_walkaddr_needs_user_bit(space, mem):
    pa = mem.kalloc()
    space.mappages(0, PGSIZE, pa, PTE_R | PTE_W)
    assert space.walkaddr(0) is None
    assert pte2pa(mem.read_pte(space.walk(0, False))) == pa


def test_mappages_panics(space, mem):
    pa = mem.kalloc()
    space.mappages(0, PGSIZE, pa, PTE_R | PTE_U)
    with pytest.raises(KernelPanic, match="remap"):
        space.mappages(0, PGSIZE, pa, PTE_R | PTE_U)
    with pytest.raises(KernelPanic, match="va not aligned"):
        space.mappages(1, PGSIZE, pa, PTE_R)
    with pytest.raises(KernelPanic, match="size not aligned"):
        space.mappages(PGSIZE, 1, pa, PTE_R)
    with pytest.raises(KernelPanic, match="mappages: size"):
        space.mappages(PGSIZE, 0, pa, PTE_R)


def test_walk_bounds(space):
    with pytest.raises(KernelPanic):
        space.walk(MAXVA, False)
    assert space.walkaddr(MAXVA) is None
    assert space.walk(0, False) is None


def test_uvmalloc_copy_roundtrip(space):
    assert space.uvmalloc(0, 3 * PGSIZE, PTE_W) == 3 * PGSIZE
    space.copyout(PGSIZE - 3, b"hello world")
    assert space.copyin(PGSIZE - 3, 11) == b"hello world"


def test_uvmalloc_zeroes_and_keeps_size_when_shrinking(space):
    space.uvmalloc(0, PGSIZE, PTE_W)
    assert space.copyin(0, PGSIZE) == bytes(PGSIZE)
    assert space.uvmalloc(2 * PGSIZE, PGSIZE, PTE_W) == 2 * PGSIZE


def test_copyout_to_read_only_fails(space):
    space.uvmalloc(0, PGSIZE, 0)
    with pytest.raises(BadAddress):
        space.copyout(0, b"x")


@pytest.mark.parametrize("addr", [5 * PGSIZE, MAXVA, 0xFFFFFFFFFFFFFFFF])
def test_copies_to_unmapped_addresses_fail(space, addr):
    space.uvmalloc(0, PGSIZE, PTE_W)
    with pytest.raises(BadAddress):
        space.copyin(addr, 8)
    with pytest.raises(BadAddress):
        space.copyout(addr, b"12345678")
    with pytest.raises(BadAddress):
        space.copyinstr(addr, 8)


def test_copyin_past_end_fails(space):
    space.uvmalloc(0, PGSIZE, PTE_W)
    with pytest.raises(BadAddress):
        space.copyin(PGSIZE - 4, 8)


def test_copyinstr(space):
    space.uvmalloc(0, 2 * PGSIZE, PTE_W)
    space.copyout(PGSIZE - 2, b"abcd\0")
    assert space.copyinstr(PGSIZE - 2, 64) == b"abcd"
    with pytest.raises(BadAddress):
        space.copyinstr(PGSIZE - 2, 3)


def test_uvmdealloc_frees_pages(space, mem):
    space.uvmalloc(0, 3 * PGSIZE, PTE_W)
    before = mem.free_count
    assert space.uvmdealloc(3 * PGSIZE, PGSIZE) == PGSIZE
    assert mem.free_count == before + 2
    assert space.walkaddr(PGSIZE) is None
    assert space.walkaddr(0) is not None
    assert space.uvmdealloc(PGSIZE, 2 * PGSIZE) == PGSIZE


def test_uvmfree_returns_all_memory(mem):
    start = mem.free_count
    space = AddressSpace(mem)
    space.uvmalloc(0, 5 * PGSIZE, PTE_W)
    space.uvmfree(5 * PGSIZE)
    assert mem.free_count == start


def test_uvmunmap_skips_unmapped(space, mem):
    space.uvmalloc(0, PGSIZE, PTE_W)
    before = mem.free_count
    space.uvmunmap(0, 2, True)
    assert space.walkaddr(0) is None
    assert mem.free_count == before + 1
    with pytest.raises(KernelPanic):
        space.uvmunmap(1, 1, True)


def test_uvmunmap_without_table_panics(space):
    with pytest.raises(KernelPanic, match="uvmunmap: walk"):
        space.uvmunmap(0, 1, False)


def test_uvmcopy_copies_independently(space, mem):
    space.uvmalloc(0, 2 * PGSIZE, PTE_W)
    space.copyout(PGSIZE + 5, b"parent")
    child = AddressSpace(mem)
    space.uvmcopy(child, 2 * PGSIZE)
    assert child.copyin(PGSIZE + 5, 6) == b"parent"
    assert child.walkaddr(PGSIZE) != space.walkaddr(PGSIZE)
    child.copyout(PGSIZE + 5, b"child!")
    assert space.copyin(PGSIZE + 5, 6) == b"parent"


def test_uvmcopy_out_of_memory_cleans_up():
    mem = PhysicalMemory(BASE, 8)
    parent = AddressSpace(mem)
    parent.uvmalloc(0, 2 * PGSIZE, PTE_W)
    before = mem.free_count
    child = AddressSpace(mem)
    with pytest.raises(OutOfMemory):
        parent.uvmcopy(child, 2 * PGSIZE)
    assert child.walkaddr(0) is None
    child.uvmfree(0)
    assert mem.free_count == before


def test_uvmalloc_out_of_memory_cleans_up():
    mem = PhysicalMemory(BASE, 6)
    start = mem.free_count
    space = AddressSpace(mem)
    with pytest.raises(OutOfMemory):
        space.uvmalloc(0, 10 * PGSIZE, PTE_W)
    assert space.walkaddr(0) is None
    space.uvmfree(0)
    assert mem.free_count == start


def test_uvmclear_removes_user_access(space):
    space.uvmalloc(0, 2 * PGSIZE, PTE_W)
    space.uvmclear(0)
    assert space.walkaddr(0) is None
    assert space.walkaddr(PGSIZE) is not None
    with pytest.raises(BadAddress):
        space.copyin(0, 1)


def test_uvmclear_unmapped_panics(space):
    with pytest.raises(KernelPanic, match="uvmclear"):
        space.uvmclear(0)


def test_uvmfirst(space):
    space.uvmfirst(b"\x13\x05init")
    assert space.copyin(0, 6) == b"\x13\x05init"
    assert space.copyin(6, 10) == bytes(10)
    pte = space.mem.read_pte(space.walk(0, False))
    assert pte_flags(pte) == PTE_W | PTE_R | PTE_X | PTE_U | PTE_V


def test_uvmfirst_too_large(space):
    with pytest.raises(KernelPanic):
        space.uvmfirst(bytes(PGSIZE))


def test_freewalk_with_leaf_panics(space):
    space.uvmalloc(0, PGSIZE, PTE_W)
    with pytest.raises(KernelPanic, match="freewalk: leaf"):
        space.freewalk()


@pytest.fixture(scope="module")
def kernel():
    mem = PhysicalMemory(PHYSTOP - 256 * PGSIZE, 256)
    etext = KERNBASE + 0x8000
    trampoline = KERNBASE + 0x7000
    return kvmmake(mem, etext, trampoline, 4), etext, trampoline


def _leaf(space, va):
    addr = space.walk(va, False)
    return 0 if addr is None else space.mem.read_pte(addr)


def test_kvmmake_maps_devices(kernel):
    kpgtbl, _, _ = kernel
    pte = _leaf(kpgtbl, UART0)
    assert pte2pa(pte) == UART0
    assert pte_flags(pte) == PTE_R | PTE_W | PTE_V
    assert kpgtbl.walkaddr(UART0) is None


def test_kvmmake_maps_kernel_text_and_data(kernel):
    kpgtbl, etext, _ = kernel
    text = _leaf(kpgtbl, KERNBASE)
    data = _leaf(kpgtbl, etext)
    assert pte2pa(text) == KERNBASE
    assert pte_flags(text) == PTE_R | PTE_X | PTE_V
    assert pte2pa(data) == etext
    assert pte_flags(data) == PTE_R | PTE_W | PTE_V
    assert _leaf(kpgtbl, PHYSTOP) == 0


def test_kvmmake_maps_trampoline_and_stacks(kernel):
    kpgtbl, _, trampoline = kernel
    tramp = _leaf(kpgtbl, TRAMPOLINE)
    assert pte2pa(tramp) == trampoline
    assert pte_flags(tramp) == PTE_R | PTE_X | PTE_V
    for p in range(4):
        assert pte_flags(_leaf(kpgtbl, kstack(p))) == PTE_R | PTE_W | PTE_V
        assert _leaf(kpgtbl, kstack(p) + PGSIZE) & PTE_V == 0
    assert _leaf(kpgtbl, kstack(4)) == 0


def test_kvmmake_without_memory_panics():
    mem = PhysicalMemory(PHYSTOP - 2 * PGSIZE, 2)
    with pytest.raises(KernelPanic, match="kvmmap"):
        kvmmake(mem, KERNBASE + 0x8000, KERNBASE + 0x7000, 1)