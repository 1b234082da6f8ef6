[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cloudsweep"
version = "0.1.0"
description = "Find and delete cloud account resources by region, age and name filters"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "aws",
    "cloud",
    "cleanup",
    "resources",
    "ec2",
    "vpc",
    "ecs",
    "cloudwatch",
    "dynamodb",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
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

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cloudsweep"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
