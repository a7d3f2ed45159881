#!/usr/bin/env python3
"""
Setup script for release-deployer.
This is a lightweight installation that only installs the deployer package.
"""

from setuptools import setup, find_packages

# Most configuration is in pyproject.toml
# This file exists for compatibility with older pip versions

setup(
    packages=find_packages(include=["release_deployer", "release_deployer.*"]),
)
