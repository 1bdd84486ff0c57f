from setuptools import setup, find_packages

setup(
    name="moraine-stack",
    version="0.1.0",
    description="Deferred-value provisioning pipeline for the to-do application stack on Azure",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Moraine Team",
    packages=find_packages(exclude=["tests", "tests.*", "infra"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "click>=8.0.0",
        "pyyaml>=6.0",
        "structlog>=23.1.0",
        "pulumi>=3.100.0",
        "pulumi-azure>=6.0.0",
        "azure-storage-blob>=12.19.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "moraine=moraine.cli.main:cli",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
