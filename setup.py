#!/usr/bin/env python
"""Setup shim for tools without PEP 517 support.

Package metadata lives in pyproject.toml.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()
