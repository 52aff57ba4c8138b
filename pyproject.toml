[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sensorhub"
version = "1.8.0"
description = "Multi-worker sensor monitor for TMP102 temperature and APDS9301 light sensors with a TCP query server and file logging"
requires-python = ">=3.10"
dependencies = []
keywords = ["i2c", "tmp102", "apds9301", "sensor", "monitoring", "logging", "gpio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
sensorhub = "sensorhub.app:main"
sensorhub-client = "sensorhub.client:main"

[tool.hatch.build.targets.wheel]
packages = ["sensorhub"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
