[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dmnd_proxy"
version = "0.2.4"
description = "Building blocks for a Stratum V1 to V2 mining translator: messages, job translation, extranonces, channels and share checks."
requires-python = ">=3.10"
dependencies = []
keywords = ["bitcoin", "mining", "stratum", "proxy", "translator", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["dmnd_proxy"]

[tool.pytest.ini_options]
addopts = "-ra"
