[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "buflea"
version = "0.1.0"
description = "Building blocks of a multi-threaded proxy server: HTTP header scanning, connection-context threads, a thread pool with traffic statistics, and a DNS routing cache"
requires-python = ">=3.10"
dependencies = []
keywords = ["proxy", "http", "threadpool", "dns", "tls", "server"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
buflea = "buflea.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["buflea"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
