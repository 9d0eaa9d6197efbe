[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tq"
version = "0.1.0"
description = "A SQLite-backed task and action queue that dispatches work to claude sessions in tmux, headless runs or remote sessions."
requires-python = ">=3.11"
dependencies = []
keywords = ["task-queue", "sqlite", "tmux", "scheduler", "cron", "dispatch", "automation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tq"]

[tool.hatch.build.targets.sdist]
include = ["tq", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 120
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
