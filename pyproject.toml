[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "machinecheck"
version = "0.1.0"
description = "Decoding, accounting and reporting of x86 machine check errors"
requires-python = ">=3.10"
dependencies = []
keywords = ["machine check", "mce", "ecc", "memory errors", "dimm", "hardware monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["machinecheck"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
