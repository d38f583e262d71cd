[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpmbfs"
version = "0.1.0"
description = "RPMB authenticated access protocol and super-block handling for a tamper-resistant block file system"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpmb", "emmc", "filesystem", "superblock", "block-device", "hmac"]
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
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rpmbfs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
