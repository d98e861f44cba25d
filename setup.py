"""
deptdocs setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="deptdocs",
    version="1.0.0",
    description="deptdocs — Department document folders with hierarchical access control",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "deptdocs=deptdocs.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
)
