[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "graphsync"
version = "0.1.0"
description = "GraphSync protocol messages, CIDs and blocks, DAG-CBOR encoding, link tracking, message queues and peer management"
requires-python = ">=3.10"
dependencies = [
    "cbor2",
]
keywords = ["graphsync", "ipld", "cid", "dag-cbor", "peer-to-peer", "protocol"]
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
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["graphsync"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
