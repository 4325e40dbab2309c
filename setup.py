"""
Setup script for triple-helix.

Triple-Helix is a position-based spaced-repetition scheduler that rotates
three parallel content tubes. It provides:

1. Scheduling core - skip-number policy, position store, tube rotation
2. Local-first persistence - SQLite state with backup records
3. Background sync - retrying remote pushes with last-write-wins reload

The 'helix' command drives the engine from the terminal.
"""

import os

from setuptools import find_packages, setup

setup(
    name="triple-helix",
    version="1.0.0",
    description="Position-based spaced-repetition scheduler with local-first sync",
    long_description=open("README.md", encoding="utf-8").read() if os.path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["triple_helix", "triple_helix.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "helix=triple_helix.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition scheduler cli education",
)
