[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "makerserve"
version = "0.4.0"
description = "HTTP service that turns file-generation requests into Ollama prompts built from TOML specifications"
requires-python = ">=3.11"
keywords = ["ollama", "llm", "http", "server", "prompt", "aiohttp", "toml"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
makerserve = "makerserve.app:main"

[tool.hatch.build.targets.wheel]
packages = ["makerserve"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
