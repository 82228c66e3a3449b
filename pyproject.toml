[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "freeghost"
version = "0.1.0"
description = "Building blocks for a secure identity node: encrypted storage, versioned network state, TCP message transport, plugins and behaviour analysis"
requires-python = ">=3.11"
keywords = [
    "identity",
    "encrypted-storage",
    "p2p",
    "state-synchronization",
    "plugins",
    "behavior-analysis",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "semver",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["freeghost"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
