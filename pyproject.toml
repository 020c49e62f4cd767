[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cfgcommit"
version = "0.1.0"
description = "Commit engine for a layered, template-driven configuration tree"
requires-python = ">=3.10"
dependencies = []
keywords = ["configuration", "commit", "router", "unionfs", "templates"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
cfgcommit = "cfgcommit.committer:main"

[tool.hatch.build.targets.wheel]
packages = ["cfgcommit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
