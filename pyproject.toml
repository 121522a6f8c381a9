[build-system]
requires = ["setuptools>=61.0"]
build-backend = "setuptools.build_meta"

[project]
name = "registrygc"
version = "0.1.0"
description = "Mark-and-sweep garbage collector for container registry storage on a filesystem or S3"
requires-python = ">=3.10"
keywords = ["registry", "garbage-collection", "docker", "s3", "storage"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml>=5.4",
    "humanize>=4.0",
    "requests>=2.25",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[project.scripts]
registrygc = "registrygc.cli:main"

[tool.setuptools.packages.find]
include = ["registrygc*"]

[tool.pytest.ini_options]
addopts = "-ra"
