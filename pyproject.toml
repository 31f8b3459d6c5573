[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nextdns"
version = "0.1.0"
description = "Client discovery, profile selection and control-socket tooling for a local DNS proxy"
requires-python = ">=3.10"
keywords = ["dns", "dhcp", "mdns", "arp", "hosts", "discovery", "control-socket"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
    "Topic :: System :: Networking",
]
dependencies = [
    "dnspython",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
nextdns = "nextdns.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["nextdns"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
