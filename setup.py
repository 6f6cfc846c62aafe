"""
Dayflow — setuptools build script.

Usage:
    # Development (editable install):
    pip install -e ".[test]"

    # Run the headless service:
    dayflow
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "dayflow"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Screen recording timeline: chunk storage, retention and AI analysis",
    packages=find_namespace_packages(include=["dayflow", "dayflow.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "pydantic>=2.5",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "dayflow=main:main",
        ],
    },
)
