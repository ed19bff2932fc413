"""Packaging for the SEO Rank Engine (``rank-engine`` CLI)."""

from pathlib import Path

from setuptools import find_packages, setup

HERE = Path(__file__).parent


def _read_requirements() -> tuple[list[str], list[str]]:
    """Split requirements.txt into runtime and test requirements.

    Everything below the ``# Testing`` header is test-only.
    """
    runtime, testing = [], []
    target = runtime
    for line in (HERE / "requirements.txt").read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.lower() == "# testing":
            target = testing
            continue
        if line and not line.startswith("#"):
            target.append(line)
    return runtime, testing


install_requires, test_requires = _read_requirements()

setup(
    name="seo-rank-engine",
    version="1.0.0",
    author="SEO Automation Team",
    description=(
        "Keyword rank tracking with progressive-depth SERP checks, "
        "rank history and monthly/weekly trend reports."
    ),
    long_description=(HERE / "README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["rank_engine", "rank_engine.*"]),
    python_requires=">=3.10",
    install_requires=install_requires,
    extras_require={
        "test": test_requires,
        "dev": test_requires + ["black", "flake8", "isort", "mypy"],
    },
    entry_points={
        "console_scripts": [
            "rank-engine=rank_engine.cli:main",
        ],
    },
    data_files=[("config", ["config/settings.yaml"])],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Framework :: Pytest",
    ],
    keywords=["seo", "rank-tracking", "serp", "dataforseo", "oxylabs"],
)
