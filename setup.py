"""
Setup configuration for the fluent-odm package.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="fluent-odm",
    version="0.1.0",
    author="fluent-odm Contributors",
    author_email="contributors@fluent-odm.example.com",
    description="An ActiveRecord-style async object-document mapper with a fluent query builder",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/fluent-odm",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Database",
        "Framework :: AnyIO",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "mongo": ["pymongo>=4.13"],
        "dev": [
            "pytest>=6.0",
            "pytest-cov",
            "anyio>=4.0",
            "ruff",
            "mypy",
        ],
    },
    project_urls={
        "Bug Reports": "https://github.com/yourusername/fluent-odm/issues",
        "Source": "https://github.com/yourusername/fluent-odm",
    },
)
