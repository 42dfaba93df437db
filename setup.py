"""Setup configuration for export-foundry package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = (
    readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""
)

setup(
    name="export-foundry",
    version="1.0.0",
    description="Export remote query results into an object store as shards and stream them back while the export runs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["shard_export"],
    python_requires=">=3.8",
    install_requires=[
        "boto3>=1.26.0",
        "pyarrow>=10.0.0",  # Required for parquet shards
        "pyyaml>=6.0",
        "tenacity>=8.0.0",  # For retry logic
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "moto[s3,athena,glue]>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "shard-export=shard_export:main",
        ],
    },
    classifiers=[
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="data-engineering export sharding athena s3 object-store",
)
