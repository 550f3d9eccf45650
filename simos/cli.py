"""Command line entry point: parse options, assemble programs, report cache use."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from simos.assembler import assemble_programs
from simos.memory import MAX_PROCESS_SIZE, AllocationError, CachePolicy, Memory

_log = logging.getLogger(__name__)

MAX_PROGRAMS = 10
PROG_NAME = "simos"


class SchedulingAlgorithm(Enum):
    """Process scheduling strategies selectable on the command line."""

    FCFS = "fcfs"
    ROUND_ROBIN = "round-robin"
    PRIORITY = "priority"
    SRT = "srt"
    HRRN = "hrrn"
    SPN = "spn"
    MLFQ = "mlfq"


@dataclass(frozen=True)
class Options:
    """Settings chosen on the command line."""

    cache_policy: CachePolicy = CachePolicy.WRITE_THROUGH
    scheduler: SchedulingAlgorithm = SchedulingAlgorithm.ROUND_ROBIN
    program_files: tuple[str, ...] = ()
    show_help: bool = False


class UsageError(Exception):
    """The command line could not be understood."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


_POLICY_OPTIONS = {
    "--write-through": CachePolicy.WRITE_THROUGH,
    "--write-back": CachePolicy.WRITE_BACK,
}

_SCHEDULER_OPTIONS = {f"--{algo.value}": algo for algo in SchedulingAlgorithm}

_HELP_OPTIONS = frozenset({"--help", "-h"})


def parse_args(argv: Sequence[str]) -> Options:
    """Build Options from the arguments that follow the program name.

    Raises UsageError when there are no arguments, an option is unknown,
    or no program file is named. At most MAX_PROGRAMS files are kept.
    """
    args = list(argv)
    if not args:
        raise UsageError()

    policy = CachePolicy.WRITE_THROUGH
    scheduler = SchedulingAlgorithm.ROUND_ROBIN
    files: list[str] = []

    for arg in args:
        if arg in _POLICY_OPTIONS:
            policy = _POLICY_OPTIONS[arg]
        elif arg in _SCHEDULER_OPTIONS:
            scheduler = _SCHEDULER_OPTIONS[arg]
        elif arg in _HELP_OPTIONS:
            return Options(policy, scheduler, tuple(files), show_help=True)
        elif arg.startswith("-"):
            raise UsageError(f"Unknown option: {arg}")
        else:
            files.append(arg)

    if not files:
        raise UsageError("Error: No program files specified")

    if len(files) > MAX_PROGRAMS:
        _log.warning(
            "Too many programs (%d), limiting to %d", len(files), MAX_PROGRAMS
        )
        files = files[:MAX_PROGRAMS]

    return Options(policy, scheduler, tuple(files))


def format_usage(prog_name: str) -> str:
    """The help text shown for `prog_name`."""
    return (
        f"Usage: {prog_name} [OPTIONS] <program1.asm> <program2.asm> ...\n\n"
        "OPTIONS:\n"
        "  --write-through       Use write-through cache policy (default)\n"
        "  --write-back          Use write-back cache policy\n"
        "\n"
        "  --fcfs                First-Come First-Served scheduling\n"
        "  --round-robin         Round Robin scheduling (default)\n"
        "  --priority            Priority scheduling\n"
        "  --srt                 Shortest Remaining Time scheduling\n"
        "  --hrrn                Highest Response Ratio Next scheduling\n"
        "  --spn                 Shortest Process Next scheduling\n"
        "  --feedback            Multi-Level Feedback Queue scheduling\n"
        "\n"
        "EXAMPLES:\n"
        f"  {prog_name} programs/hello_world.asm\n"
        f"  {prog_name} --write-back --fcfs prog1.asm prog2.asm\n"
        f"  {prog_name} --round-robin programs/*.asm\n"
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Assemble the named programs into a fresh memory; return the exit status."""
    args = sys.argv[1:] if argv is None else list(argv)

    try:
        opts = parse_args(args)
    except UsageError as exc:
        if exc.message:
            print(f"{exc.message}\n", file=sys.stderr)
        print(format_usage(PROG_NAME), end="")
        return 1

    if opts.show_help:
        print(format_usage(PROG_NAME), end="")
        return 0

    memory = Memory(opts.cache_policy)
    for pid in range(len(opts.program_files)):
        try:
            memory.mallocate(pid, MAX_PROCESS_SIZE)
        except AllocationError as exc:
            print(str(exc), file=sys.stderr)
            return 1

    results = assemble_programs(list(opts.program_files), memory)

    for process_id, (filename, result) in enumerate(zip(opts.program_files, results)):
        print(f"Assembling process {process_id}: {filename}")
        if result.success:
            program = result.program
            print("  ✓ Successfully assembled")
            print(
                f"    Text: 0x{program.text_start:08x} - "
                f"0x{program.text_start + program.text_size:08x} "
                f"({program.text_size} bytes)"
            )
            print(
                f"    Data: 0x{program.data_start:08x} - "
                f"0x{program.data_start + program.data_size:08x} "
                f"({program.data_size} bytes)"
            )
            print(f"    Entry: 0x{program.entry_point:08x}")
        else:
            print(f"  ✗ Failed: {result.error}")

    if not any(result.success for result in results):
        print("\nError: No programs assembled successfully", file=sys.stderr)
        return 1

    print(memory.format_cache_stats(), end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())