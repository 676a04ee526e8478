[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "penumbra-explorer"
version = "0.1.0"
description = "Indexing and query core for exploring blocks and transactions of the Penumbra chain"
requires-python = ">=3.10"
dependencies = []
keywords = ["penumbra", "blockchain", "explorer", "indexer", "postgresql"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Framework :: AsyncIO",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["penumbra_explorer"]

[tool.hatch.build.targets.sdist]
include = ["penumbra_explorer", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
