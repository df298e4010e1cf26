#!/usr/bin/python
# -*- encoding: utf-8 -*-
import ast
import re

from setuptools import find_packages
from setuptools import setup

## The version number is kept in one place only, as
## caldav_sync.__version__, and picked up from there
_version_re = re.compile(r"__version__\s+=\s+(.*)")
with open("caldav_sync/__init__.py", "rb") as f:
    version = str(
        ast.literal_eval(_version_re.search(f.read().decode("utf-8")).group(1))
    )

if __name__ == "__main__":
    test_packages = [
        "pytest",
        "pytest-asyncio",
        "pytest-coverage",
        "coverage",
    ]

    setup(
        name="caldav-sync",
        version=version,
        description="Incremental CalDAV collection synchronization (RFC6578 sync tokens)",
        long_description=open("README.md").read(),
        long_description_content_type="text/markdown",
        classifiers=[
            "Development Status :: 4 - Beta",
            "Intended Audience :: Developers",
            "License :: OSI Approved :: Apache Software License",
            "Operating System :: OS Independent",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Topic :: Office/Business :: Scheduling",
            "Topic :: Software Development :: Libraries " ":: Python Modules",
        ],
        keywords="caldav sync rfc6578",
        license="Apache-2.0",
        python_requires=">=3.10",
        packages=find_packages(exclude=["tests", "tests.*", "examples"]),
        include_package_data=True,
        zip_safe=False,
        install_requires=[
            "lxml",
            "requests",
            "aiohttp",
            "icalendar",
        ],
        extras_require={
            "yaml": ["pyyaml"],
            "test": test_packages,
        },
    )
