[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lambdaloop"
version = "0.1.0"
description = "A lifecycle-aware AWS Lambda custom runtime with a Runtime API client and JSON logger"
requires-python = ">=3.10"
dependencies = []
keywords = ["aws", "lambda", "runtime", "serverless", "logging"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lambdaloop-bootstrap = "lambdaloop.bootstrap:main"

[tool.hatch.build.targets.wheel]
packages = ["lambdaloop"]

[tool.pytest.ini_options]
addopts = "-ra"
