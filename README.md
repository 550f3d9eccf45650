# simos

simos is a teaching-sized machine simulator with two machines:

- **The MIPS-1 machine**: an assembler for a subset of MIPS-1 assembly, a
  32-bit CPU, and a byte-addressed memory with a two-level cache (L1 and L2),
  per-process access checks and a best-fit block allocator.
- **The accumulator machine** (`simos.accumulator`): a 16-bit CPU with a single
  accumulator, a word-addressed memory behind two small caches, a priority
  interrupt controller and a DMA copy between storage buffers.

## Command line

Assemble one or more programs into a fresh simulated memory:

```
simos [OPTIONS] <program1.asm> <program2.asm> ...
```

| Option            | Meaning                                      |
|-------------------|----------------------------------------------|
| `--write-through` | Use the write-through cache policy (default) |
| `--write-back`    | Use the write-back cache policy              |
| `--fcfs`          | Select First-Come First-Served scheduling    |
| `--round-robin`   | Select Round Robin scheduling (default)      |
| `--priority`      | Select Priority scheduling                   |
| `--srt`           | Select Shortest Remaining Time scheduling    |
| `--hrrn`          | Select Highest Response Ratio Next scheduling|
| `--spn`           | Select Shortest Process Next scheduling      |
| `--mlfq`          | Select Multi-Level Feedback Queue scheduling |
| `-h`, `--help`    | Show usage and exit                          |

The usage text lists this last scheduler as `--feedback`, but the option
that is accepted is `--mlfq`; any other argument starting with `-` is
reported as an unknown option, with exit status 1.

Each program gets a process id in the order given, which places its text
and data in its own 1 MB region; at most ten programs are taken. For each
program the command prints whether it assembled, its text and data ranges
and its entry point, and it ends with the cache statistics. The exit status
is 1 when no program assembled.

Run the accumulator machine's demonstration:

```
simos-acc-demo
```

It loads a short program, queues two interrupts, copies data between the
RAM, HDD and SSD buffers by DMA and runs the CPU for up to 20 cycles. It
then prints the number of cycles run, the interrupts handled, the final CPU
state, the cache statistics and the value stored at address `0xC`.

## Assembly language

- sections `.text` and `.data`, and `.globl`;
- data directives `.word`, `.half`, `.byte`, `.ascii`, `.asciiz`, `.space`
  and `.align` (`.align 0` turns automatic alignment of words and halves off);
- labels ending in `:`; the entry point is the label `main`, or else the
  first instruction of the text section;
- R-type arithmetic, logic and shifts, I-type immediates, loads and stores,
  `beq`/`bne`, `j`/`jal`, `jr`, `syscall`, `break` and `eret`;
- pseudo-instructions `li`, `la`, `move` and `nop`. Every source line takes
  one word, so a `li` or `la` that expands to two instructions is encoded as
  the first of them only.

Numbers may be decimal, hexadecimal (`0x`), binary (`0b`) or octal (leading
`0`). Registers may be named (`$t0`, `$sp`, ...) or numbered (`$8`). A bad
register, a missing or undefined branch or jump label, an unreadable file or
more than 4096 instructions raise `simos.encoder.AssemblyError`.

## Library use

MIPS-1 machine:

- `simos.memory.Memory(policy)` takes a `CachePolicy` (`WRITE_THROUGH` or
  `WRITE_BACK`) and provides `read_byte`/`read_hword`/`read_word`,
  `write_byte`/`write_hword`/`write_word` (little-endian),
  `set_current_process`, `mallocate`/`liberate`, `memory_blocks()`,
  `cache_stats()` and `format_cache_stats()`. Accesses outside RAM or
  outside the current process's regions raise `MemoryAccessError`; a failed
  allocation or free raises `AllocationError`.
- `simos.assembler.assemble(filename, process_id, memory)` assembles a file,
  writes it into `memory` when one is given and returns an `AssemblyResult`
  holding an `AssembledProgram` (addresses, sizes, encoded words, data bytes)
  and the symbol table; `symbol_address(name)` looks up a label.
  `assemble_programs(filenames, memory)` assembles several files and returns
  failures as unsuccessful results. `format_assembly_result` renders a report.
- `simos.encoder` offers `assemble_line`, `expand_pseudo`, `parse_num`,
  `get_register`, the `encode_*_type` helpers and `SymbolTable`.
- `simos.cpu.Cpu(memory, entry_point)` offers `fetch()`, `execute()` and
  `run(max_cycles)`, which runs until `syscall`, `break` or an invalid opcode
  halts it. `read_gpr`, `write_gpr` and `has_flag` inspect the state.
- `simos.isa.execute_instruction(cpu, instruction)` executes one encoded word.

Accumulator machine (`simos.accumulator`):

- `memory.Memory` with `read`, `write` and `format_cache_stats`;
- `cpu.Cpu` with `fetch`, `execute`, `execute_instruction` and
  `run(program_size, controller)`; `cpu.decode` splits an instruction;
- `interrupts.InterruptController` with `add`, `next_interrupt`, `handle`
  and `check`;
- `dma.initiate_dma(source, destination, size)`.

## What it does not do

- The `simos` command assembles and loads programs but does not run them;
  the scheduling options are parsed and have no further effect.
- The MIPS-1 CPU has no exception handling: `eret` does nothing, and a
  division by zero leaves `HI` and `LO` unchanged.
- The SSD and HDD of the accumulator machine are plain in-memory lists;
  nothing is stored on disk.