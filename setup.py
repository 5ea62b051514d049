"""Setup script for the specimen-lifecycle package following Cosmic Python pattern."""

from setuptools import setup, find_namespace_packages

setup(
    name="specimen-lifecycle",
    version="1.0.0",
    description="Laboratory specimen lifecycle tracker - collection, receipt, processing and audit trail",
    author="Lab Specimen Team",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn[standard]",
        "pydantic>=2",
        "sqlalchemy>=2.0,<2.1",
        "psycopg2-binary",
        "redis",
        "requests",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "httpx",
            "fakeredis",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "specimen-expiry-sweeper=specimens.entrypoints.expiry_sweeper:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
    ],
)
