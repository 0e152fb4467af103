"""
DealerDocs setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="dealerdocs",
    version="1.0.0",
    description="DealerDocs — file management and secure sharing for dealership dashboards",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "dealerdocs=dealerdocs.cli:main",
        ],
    },
    install_requires=[
        "pydantic[email]>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
