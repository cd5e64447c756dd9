[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "peerpressure"
version = "0.1.0"
description = "BitTorrent tracker clients (HTTP, UDP, scrape, multi-tier) and uTP packet and congestion primitives"
requires-python = ">=3.10"
dependencies = []
keywords = ["bittorrent", "tracker", "utp", "ledbat", "p2p", "bep15", "bep29"]
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
    "Topic :: Communications :: File Sharing",
    "Topic :: Internet",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["peerpressure"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
