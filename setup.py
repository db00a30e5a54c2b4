"""
Setup script for adaptive-sql-tutor.

Adaptive SQL tutoring engine. It turns a stream of learner interaction
events into:

1. Guidance decisions - which hint level or explanation to surface next
2. Concept coverage - per-concept mastery evidence for progress reporting
3. Decision traces - deterministic replays of any strategy over an event log

The 'tutor' command inspects and replays event logs.
"""

from setuptools import find_packages, setup

setup(
    name="adaptive-sql-tutor",
    version="0.3.0",
    description="Adaptive SQL tutoring engine: hint ladder, escalation policy, concept coverage",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "tutor=src.cli.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="sql tutoring adaptive hints education",
)
