[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loanservice"
version = "0.1.0"
description = "HTTP service for proposing and approving loans, with idempotent mutating requests backed by Redis"
requires-python = ">=3.10"
keywords = ["loans", "lending", "http", "api", "idempotency", "flask", "sqlalchemy", "redis"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Office/Business :: Financial",
]
dependencies = [
    "flask",
    "sqlalchemy",
    "redis",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
loanservice = "loanservice.app:main"

[tool.hatch.build.targets.wheel]
packages = ["loanservice"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
