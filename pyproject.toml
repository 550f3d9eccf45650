[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "simos"
version = "0.1.0"
description = "A small machine simulator: a MIPS-1 assembler and CPU over a cached memory, plus a 16-bit accumulator machine"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "mips",
    "assembler",
    "emulator",
    "cpu",
    "cache",
    "simulator",
    "interrupts",
    "education",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: Software Development :: Assemblers",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
simos = "simos.cli:main"
simos-acc-demo = "simos.accumulator.demo:main"

[tool.hatch.build.targets.wheel]
packages = ["simos"]

[tool.pytest.ini_options]
addopts = "-ra"
