"""A 16-bit accumulator machine with caches, interrupts and DMA."""