#!/usr/bin/env python3
"""
Setup script for gpgmail.

Install with `pip install .` or `pip install -e .`; add the `dev` extra
for the test tools.
"""

import re
import sys
from pathlib import Path

if sys.version_info < (3, 11):
    sys.exit("Error: gpgmail requires Python 3.11 or higher.")

from setuptools import find_packages, setup

here = Path(__file__).parent

# Read version from __version__.py for consistency
version_file = here / "src" / "gpgmail" / "__version__.py"
version_content = version_file.read_text(encoding="utf-8")
version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', version_content, re.M)
version = version_match.group(1) if version_match else "0.1.0"

# Read long description from README if available
readme_path = here / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
    long_description_content_type = "text/markdown"
else:
    long_description = "OpenPGP encryption, signing and verification for email messages"
    long_description_content_type = "text/plain"

# Core dependencies
install_requires = [
    "python-gnupg>=0.5.2",
    "pydantic>=2.5.0",
    "pydantic-settings>=2.1.0",
    "requests>=2.31.0",
    "aiosmtplib>=3.0.0",
]

# Development dependencies
extras_require = {
    "dev": [
        "pytest>=7.4.0",
        "black>=23.0.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
        "pytest-cov>=4.1.0",
    ],
}
extras_require["test"] = ["pytest>=7.4.0", "pytest-cov>=4.1.0"]

setup(
    name="gpgmail",
    version=version,
    description="OpenPGP encryption, signing and verification for email messages",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    author="gpgmail Team",
    license="MIT",
    python_requires=">=3.11",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "gpgmail=gpgmail.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Email",
        "Topic :: Security :: Cryptography",
    ],
    keywords=["email", "encryption", "gpg", "pgp-mime", "keyserver"],
)
