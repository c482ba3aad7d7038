[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kvraft"
version = "0.1.0"
description = "Building blocks for a Raft-backed key/value store: skip list storage, fibers, a scheduler, timers and an event-driven I/O manager"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "raft",
    "key-value",
    "skiplist",
    "fiber",
    "scheduler",
    "timer",
    "event-loop",
    "echo-server",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
kvraft-echo-server = "kvraft.echo_server:main"

[tool.hatch.build.targets.wheel]
packages = ["kvraft"]

[tool.hatch.build.targets.sdist]
include = ["kvraft", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
