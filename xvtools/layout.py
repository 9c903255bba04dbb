"""Physical and virtual memory layout of the machine and the kernel.

The board places its devices at fixed physical addresses and RAM from
``KERNBASE`` to ``PHYSTOP``.  Virtual addresses use the three-level Sv39
scheme: the trampoline page sits at the top of every address space with
the trapframe just below it, and kernel stacks live beneath the trampoline,
each followed by an unmapped guard page.
"""

from __future__ import annotations

PGSIZE = 4096
PGSHIFT = 12

# One bit less than the most Sv39 allows, so that addresses never need
# sign extension.
MAXVA = 1 << (9 + 9 + 9 + 12 - 1)

UART0 = 0x10000000
UART0_IRQ = 10

VIRTIO0 = 0x10001000
VIRTIO0_IRQ = 1

PLIC = 0x0C000000
PLIC_PRIORITY = PLIC + 0x0
PLIC_PENDING = PLIC + 0x1000

KERNBASE = 0x80000000
PHYSTOP = KERNBASE + 128 * 1024 * 1024

TRAMPOLINE = MAXVA - PGSIZE
TRAPFRAME = TRAMPOLINE - PGSIZE


def kstack(p: int) -> int:
    """Virtual address of the kernel stack of process slot ``p``."""
    return TRAMPOLINE - (p + 1) * 2 * PGSIZE


def plic_senable(hart: int) -> int:
    """Supervisor interrupt-enable register of ``hart``."""
    return PLIC + 0x2080 + hart * 0x100


def plic_spriority(hart: int) -> int:
    """Supervisor priority-threshold register of ``hart``."""
    return PLIC + 0x201000 + hart * 0x2000


def plic_sclaim(hart: int) -> int:
    """Supervisor claim/complete register of ``hart``."""
    return PLIC + 0x201004 + hart * 0x2000


def pgroundup(a: int) -> int:
    """Round ``a`` up to a page boundary."""
    return (a + PGSIZE - 1) & ~(PGSIZE - 1)


def pgrounddown(a: int) -> int:
    """Round ``a`` down to a page boundary."""
    return a & ~(PGSIZE - 1)