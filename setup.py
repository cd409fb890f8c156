"""Setup script for pgsdbuild."""

from pathlib import Path

from setuptools import find_packages, setup

# Read the version from __version__.py
version_dict = {}
with open("pgsdbuild/__version__.py") as f:
    exec(f.read(), version_dict)

VERSION = version_dict["__version__"]

# Read the long description from README
README = Path("README.md").read_text(encoding="utf-8")

setup(
    name="pgsdbuild",
    version=VERSION,
    author="PGSD Foundation",
    description="Build, export and install PGSD FreeBSD system images and boot ISOs",
    long_description=README,
    long_description_content_type="text/markdown",
    url="https://github.com/pgsdf/pgsdbuild",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "aiohttp>=3.9.0",
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-mock>=3.10.0",
            "ruff>=0.1.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "pgsdbuild=pgsdbuild.main:main",
            "pgsd-inst=pgsdbuild.main:installer_main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Installation/Setup",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: BSD License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: BSD :: FreeBSD",
    ],
    keywords="freebsd zfs installer iso image build fetch",
    project_urls={
        "Bug Reports": "https://github.com/pgsdf/pgsdbuild/issues",
        "Source": "https://github.com/pgsdf/pgsdbuild",
    },
)
