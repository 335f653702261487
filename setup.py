#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for the Cartographer fog-of-war engine.
"""

from pathlib import Path

from setuptools import find_packages, setup

VERSION = "1.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")
else:
    long_description = "Cartographer fog-of-war computation core"

setup(
    name="cartographer",
    version=VERSION,
    description="Fog-of-war computation core for exploration maps",
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    packages=find_packages(include=["cartographer", "cartographer.*"]),
    install_requires=[
        "shapely>=2.0",
        "pydantic>=2.0",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
)
