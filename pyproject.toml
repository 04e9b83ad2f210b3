[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "eternalmux"
version = "0.1.0"
description = "Headless terminal multiplexer with a persistent daemon, plus helpers for bootstrapping remote shells over ssh"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "terminal",
    "multiplexer",
    "pty",
    "ssh",
    "remote-shell",
    "ipc",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Terminals",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
htm = "eternalmux.htm_client:main"
htmd = "eternalmux.htm_server:main"

[tool.hatch.build.targets.wheel]
packages = ["eternalmux"]

[tool.hatch.build.targets.sdist]
include = ["eternalmux", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
