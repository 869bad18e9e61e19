"""Setup script for the face verification engine package."""

from setuptools import setup, find_namespace_packages
from pathlib import Path

# Read README if it exists
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="faceverify-engine",
    version="0.1.0",
    description="Selfie-to-document face verification with a multi-metric ensemble",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Face Verification Team",
    # Subpackages carry no __init__.py
    packages=find_namespace_packages(include=["faceverify", "faceverify.*", "scripts"]),
    python_requires=">=3.9,<3.12",
    install_requires=[
        "insightface>=0.7.3",
        "onnxruntime>=1.16.3",  # 1.16.3 for Mac CoreML compatibility
        "opencv-python>=4.9.0,<4.12",  # Lock to 4.11.x for NumPy 1.x compatibility
        "numpy>=1.26.0,<2.0",  # Lock to 1.x for onnxruntime compatibility
        "pandas>=2.2.0",
        "pyarrow>=15.0.0,<26",  # 26+ requires NumPy 2
        "tqdm>=4.66.0",
        "pillow>=10.3.0",
        "pyyaml>=6.0.0",
        "scipy",
        "scikit-image>=0.22.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black",
            "flake8",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "faceverify-verify=scripts.verify_pair:main",
            "faceverify-batch=scripts.verify_batch:main",
            "faceverify-stats=scripts.verification_stats:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
