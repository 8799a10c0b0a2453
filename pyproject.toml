[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "uwsproto"
version = "0.1.0"
description = "WebSocket frame parsing, formatting, handshake and connection event handling"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "websocket",
    "rfc6455",
    "framing",
    "handshake",
    "permessage-deflate",
    "server",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
uwsproto-build = "uwsproto.build:main"

[tool.hatch.build.targets.wheel]
packages = ["uwsproto"]

[tool.hatch.build.targets.sdist]
include = ["uwsproto", "tests", "pyproject.toml"]

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
