[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "builderkit"
version = "0.1.0"
description = "Builder instance store, driver registry, build flag parsing, progress events and Kubernetes manifests for container image builds"
requires-python = ">=3.10"
keywords = ["build", "containers", "buildkit", "platforms", "kubernetes", "progress"]
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
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "filelock",
    "tomlkit",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["builderkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
