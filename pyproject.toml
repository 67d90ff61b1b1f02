[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bgdaemon"
version = "0.1.0"
description = "Run a program in the background as a daemon, with initialization status reporting and self-monitoring auto-restart."
requires-python = ">=3.10"
dependencies = []
keywords = ["daemon", "daemonize", "background", "supervisor", "auto-restart", "init"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot :: Init",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
bgdaemon = "bgdaemon.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["bgdaemon"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
