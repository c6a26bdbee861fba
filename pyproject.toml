[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hydracrank"
version = "0.1.1"
description = "Permissionless slot-scheduled crank: account layout, instruction builders, in-memory program logic and an off-chain cranker"
requires-python = ">=3.10"
keywords = ["solana", "crank", "scheduler", "keeper", "cranker", "pda"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "pynacl",
    "requests",
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
hydra-cranker = "hydracrank.cranker.main:main"

[tool.hatch.build.targets.wheel]
packages = ["hydracrank"]

[tool.hatch.build.targets.sdist]
include = ["hydracrank", "tests", "pyproject.toml"]

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
