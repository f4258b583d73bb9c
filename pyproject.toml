[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "trexsvc"
version = "0.1.0"
description = "Service scaffolding: WSGI request logging and metrics middleware, health check and metrics servers, runtime environments and a project cloner"
requires-python = ">=3.10"
dependencies = []
keywords = ["wsgi", "middleware", "metrics", "prometheus", "healthcheck", "microservice", "template"]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
trex = "trexsvc.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["trexsvc"]

[tool.pytest.ini_options]
addopts = "-ra"
