#!/usr/bin/env python3
"""
Setup script for the Scatter wallet client
"""

from setuptools import setup, find_packages

setup(
    name="scatter-client",
    version="0.1.0",
    description="Async client for the Scatter desktop wallet socket API",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets>=15.0",
        "typer>=0.12.3",
        "rich>=13.9.2",
        "PyYAML>=6.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=8.4.2",
            "pytest-asyncio>=1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'scatter-client=scatter.scatter_cli:main',
        ],
    },
)
