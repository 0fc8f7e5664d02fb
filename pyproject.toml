[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cardity"
version = "1.0.0"
description = "Runtime for Cardity .car protocols: load a protocol, keep its state and call its methods"
requires-python = ">=3.10"
dependencies = []
keywords = ["cardity", "protocol", "runtime", "interpreter", "state"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Environment :: Console",
    "Topic :: Software Development :: Interpreters",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
cardity = "cardity.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["cardity"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
