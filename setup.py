"""Setup script for the dwelltime attention engine package."""

from setuptools import setup, find_namespace_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="dwelltime-engine",
    version="0.1.0",
    description="Face tracking, re-identification and attention-duration engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Dwelltime Team",
    # Subpackages carry no __init__.py, so they are collected as namespace packages.
    packages=find_namespace_packages(include=["dwelltime*", "scripts"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.26.0",
        "pandas>=2.2.0",
        "tqdm>=4.66.0",
        "pyyaml>=6.0.0",
        "scipy",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black",
            "flake8",
            "mypy",
        ],
        "vision": [
            "insightface>=0.7.3",
            "onnxruntime>=1.16.3",  # 1.16.3 for Mac CoreML compatibility
            "opencv-python>=4.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dwelltime-replay=scripts.replay_observations:main",
            "dwelltime-camera=scripts.run_camera:main",
            "dwelltime-enroll=scripts.enroll_identity:main",
            "dwelltime-export=scripts.export_history:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
