"""Setup script for luks-bootstrap."""

from setuptools import setup, find_packages
from pathlib import Path

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    with open(requirements_file) as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    with open(readme_file, encoding='utf-8') as f:
        long_description = f.read()

setup(
    name="luks-bootstrap",
    version="1.0.0",
    author="luks-bootstrap developers",
    description="Provision, mount and tear down a TPM-escrowed LUKS bootstrap volume",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=requirements,
    extras_require={
        "journal": ["systemd-python"],
        "test": ["pytest"],
    },
    python_requires=">=3.11",
    data_files=[("libexec/luks-bootstrap", ["scripts/tpm-luks-keyscript.sh"])],
    entry_points={
        "console_scripts": [
            "luks-bootstrap=luks_bootstrap.daemon:main",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: System Administrators",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Systems Administration",
        "Topic :: Security",
    ],
)
