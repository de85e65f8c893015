"""
DEWA (Download Everything With AI): setuptools build script.

Installs the dewa.core package and a `dewa` console command that wraps
yt-dlp with job tracking, resumable downloads and fragment cleanup.

Usage:
    # Development (editable, links to source):
    pip install -e ".[test]"

    # Run the test suite:
    python -m pytest tests
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "dewa"

setup(
    name="dewa-downloader",
    version="1.0.0",
    description="yt-dlp download orchestration with a persistent job ledger",
    packages=find_namespace_packages(include=["dewa", "dewa.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            f"{APP_NAME}=main:main",
        ],
    },
)
