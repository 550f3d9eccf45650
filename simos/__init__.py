"""A small machine simulator: a MIPS-1 assembler and CPU over a cached memory, and a 16-bit accumulator machine."""

__version__ = "0.1.0"