[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "mboxindex"
version = "0.1.0"
description = "Scan, checksum and parse mbox folders and RFC 822 messages for building a mail search index"
requires-python = ">=3.10"
keywords = ["mbox", "email", "rfc822", "mime", "rfc2047", "index", "mail search"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Email :: Filters",
    "Topic :: Communications :: Email",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["mboxindex"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
