[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "httpscaler"
version = "0.1.0"
description = "External-scaler logic that aggregates pending HTTP request counts from interceptors and reports scaling metrics"
requires-python = ">=3.10"
dependencies = []
keywords = ["autoscaling", "http", "metrics", "scaler", "queue"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["httpscaler"]

[tool.pytest.ini_options]
addopts = "-ra"
