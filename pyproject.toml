[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "s3router"
version = "0.1.0"
description = "Route S3 operations between a primary and a secondary store by bucket, prefix and operation"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["s3", "router", "mirror", "fallback", "object-storage", "replication"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["s3router"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
