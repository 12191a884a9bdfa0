"""Packaging for linkledger (src layout, console script ``linkledger``)."""

from setuptools import find_packages, setup

setup(
    name="linkledger",
    version="0.1.0",
    description="Categorized link list kept in one markdown file in a versioned store",
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "click>=8.1",
        "requests>=2.31",
        "rich>=13.0",
    ],
    extras_require={
        "test": ["pytest>=8.0"],
    },
    entry_points={
        "console_scripts": ["linkledger=linkledger.cli:main"],
    },
)
