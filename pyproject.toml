[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ringtrack"
version = "0.1.0"
description = "Detection, identification and localisation of black-and-white circular ring markers in camera images"
requires-python = ">=3.10"
keywords = ["marker", "fiducial", "localization", "circle detection", "computer vision", "robotics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ringtrack"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
