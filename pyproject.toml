[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "casauth"
version = "2.0.0"
description = "CAS (Central Authentication Service) client and WSGI middleware"
requires-python = ">=3.10"
keywords = ["cas", "authentication", "sso", "wsgi", "middleware", "single-logout"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Security",
]
dependencies = [
    "requests>=2.25",
    "pyyaml>=5.4",
    "werkzeug>=2.2",
]

[project.optional-dependencies]
test = [
    "pytest>=7",
    "responses>=0.23",
    "werkzeug>=2.2",
]

[tool.hatch.build.targets.wheel]
packages = ["casauth"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
