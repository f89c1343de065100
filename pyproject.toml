[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "coltop2d"
version = "1.0.0"
description = "Reader and writer for Coltop 2D (.c2d) elevation, slope and aspect rasters"
requires-python = ">=3.10"
keywords = ["gis", "raster", "dem", "slope", "aspect", "terrain", "c2d", "coltop"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: GIS",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["coltop2d"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
