#!/usr/bin/env python3
"""
setup.py compatibility wrapper for tools that still expect one.

The project is built from pyproject.toml with hatchling. For normal
installation, use:
    pip install .
"""

from setuptools import setup

setup()
