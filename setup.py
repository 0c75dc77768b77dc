"""
Packaging for haulsim. The version comes from the last git tag, with a
fallback to ``__version__`` in ``src/haulsim/__init__.py``.
"""
import re
import subprocess
from pathlib import Path
from setuptools import find_packages, setup

FALLBACK_VERSION = "1.0.0"


def get_version() -> str:
    """get the last version tag from git, with fallback to __init__.py

    Returns:
        str: version tag in PEP 440 format
    """
    try:
        result = subprocess.run(
            ["git", "describe", "--tags"],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            timeout=5,
            cwd=Path(__file__).parent,
        )
        version_tag = result.stdout.decode("utf-8").strip()

        # "v1.2.0-12-g4f69b64" becomes "1.2.0.post12"
        match = re.fullmatch(r'v?(\d+\.\d+\.\d+)(?:-(\d+)-g[a-f0-9]+)?', version_tag)
        if match:
            base_version, commits_since = match.groups()
            return f"{base_version}.post{commits_since}" if commits_since else base_version
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass

    init_file = Path(__file__).parent / "src" / "haulsim" / "__init__.py"
    if init_file.exists():
        match = re.search(r'__version__\s*=\s*["\']([^"\']+)["\']', init_file.read_text())
        if match:
            return match.group(1)

    return FALLBACK_VERSION


setup(
    name="haulsim",
    version=get_version(),
    description="Discrete event simulation of dump trucks at loaders and a weigh scale",
    python_requires=">=3.9",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "colorlog",
        "matplotlib",
        "numpy",
        "pandas",
        "scipy",
        "simpy>=4",
    ],
    extras_require={
        "test": ["pytest"],
    },
)
