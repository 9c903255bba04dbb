# xvtools

Pure-Python models of the user programs, the on-disk file system and the
virtual-memory code of a small teaching Unix-like system. There are no
third-party dependencies.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Commands

Three commands are installed. Each returns exit status 0 on success and 1
on a usage error or a file that cannot be opened.

```
xv-grep pattern [file ...]
```

Prints the newline-terminated lines that match `pattern`. Only four
operators are known: `^` anchors at the start, `$` at the end, `.` matches
any character and `*` repeats the preceding character. With no files,
standard input is searched. Input is held in a 1024-byte buffer, so a final
line with no newline is not printed, and a line too long for the buffer
ends the search.

```
xv-wc [file ...]
```

Prints the line, word and byte counts of each file (or of standard input),
followed by its name.

```
xv-mkfs fs.img file ...
```

Builds a file-system image in `fs.img` (2000 blocks of 1024 bytes, 200
inodes, 30 log blocks): boot block, superblock, log, inode blocks, free-block
bitmap and data blocks. Each listed file is placed in the root directory; a
leading `user/` and then a leading `_` are dropped from its name, and the
remaining name must hold no `/` and be at most 14 bytes. The layout and the
number of blocks used are printed.

## Library

- `xvtools.printf` – `format(fmt, *args)` returns the formatted text;
  `printf` writes it to standard output and `fprintf(stream, ...)` to a
  stream. Only `%d`, `%u`, `%x` (also as `%ld`, `%lld` and so on), `%p`,
  `%s` and `%%` are understood. Integers go through a 32-bit conversion,
  hex digits are upper case, `%p` prints 16 hex digits after `0x`, a `None`
  string prints `(null)`, and an unknown sequence is echoed as `%` and the
  character. Too few arguments raise `TypeError`.
- `xvtools.ulib` – `atoi` (leading decimal digits only), `strcmp` and
  `memcmp` (byte differences, negative/zero/positive), and
  `gets(stream, max)`, which reads at most `max - 1` characters and stops
  after `\n` or `\r`.
- `xvtools.umalloc` – `Heap(limit)`, a first-fit, address-ordered,
  coalescing free-list allocator in 16-byte units that grows its heap by at
  least 4096 units at a time. `malloc` returns an address or raises
  `OutOfMemory`; `free` raises `ValueError` for an address it did not hand
  out; `free_blocks()` lists `(address, size in bytes)` pairs.
- `xvtools.grep` – `match(re, text)` and `grep(pattern, stream, out)`.
- `xvtools.wc` – `count(stream)` returns a frozen `Counts(lines, words,
  chars)`; `wc(stream, name, out)` also prints it.
- `xvtools.sh` – `tokenize` splits a command line into words and the
  operators `< > >> | & ; ( )`; `parsecmd` builds a tree of `ExecCmd`,
  `RedirCmd` (with a `Mode` of `READ`, `TRUNCATE` or `APPEND`), `PipeCmd`,
  `ListCmd` and `BackCmd`. Malformed input, a missing redirection file or
  ten or more arguments raise `ShellSyntaxError`, which carries any
  unparsed `leftovers`.
- `xvtools.coreutils` – `cat`, `echo`, `ln`, `rm`, `mkdir`, `ls` and `kill`
  work on the host system; each takes its arguments without the program
  name and returns an exit status. `fmtname` pads a path's last component to
  14 characters; `FileType` is `DIR`, `FILE` or `DEVICE`.
- `xvtools.layout` – memory-map constants (`KERNBASE`, `PHYSTOP`,
  `TRAMPOLINE`, `TRAPFRAME`, ...) and `kstack`, `plic_senable`,
  `plic_spriority`, `plic_sclaim`, `pgroundup` and `pgrounddown`.
- `xvtools.vm` – a three-level Sv39 page-table model. `PhysicalMemory`
  hands out and takes back pages; `AddressSpace` provides `walk`,
  `walkaddr`, `mappages`, `kvmmap`, `uvmunmap`, `uvmfirst`, `uvmalloc`,
  `uvmdealloc`, `freewalk`, `uvmfree`, `uvmcopy`, `uvmclear`, `copyout`,
  `copyin` and `copyinstr`. Failures raise `KernelPanic`, `OutOfMemory` or
  `BadAddress`. `kvmmake` builds the kernel's direct map.
- `xvtools.virtio` – register offsets, `Status` and `DescFlags`, and the
  packable `VirtqDesc`, `VirtqAvail`, `VirtqUsedElem`, `VirtqUsed` and
  `VirtioBlkReq` layouts, plus the `Buf` block-cache record.
- `xvtools.mkfs` – `Geometry`, the `Superblock`, `Dinode` and `Dirent`
  records, `xshort`/`xint`, and `ImageBuilder`, which `xv-mkfs` drives
  through `add_file` and `finish`.
- `xvtools.prng` – the Park–Miller generator `do_rand(ctx)` and `Rand`,
  which can also be iterated.

```python
from xvtools.grep import match
from xvtools.printf import format
from xvtools.sh import parsecmd

if match("^ab*c$", "abbbc"):
    print(format("%d items, mask %x\n", 3, 255))

tree = parsecmd("cat < in | grep x > out")
print(tree)
```

## What it does not do

- The shell module only parses command lines; nothing runs them.
- There is no kernel, process model or disk driver: `xvtools.vm` models page
  tables over a byte array, and `xvtools.virtio` only describes the data
  layouts.
- Images made by `xv-mkfs` can be written but there is no reader that mounts
  or lists them.
- `cat`, `echo`, `ln`, `rm`, `mkdir`, `ls` and `kill` are library functions,
  not installed commands.