[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tuffy"
version = "0.1.0"
description = "Liveness analysis, linear scan register allocation and rule-driven instruction-selection generation for a compiler backend"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "register-allocation", "liveness", "linear-scan", "instruction-selection", "codegen"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Compilers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tuffy-isel-gen = "tuffy.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["tuffy"]

[tool.pytest.ini_options]
addopts = "-ra"
