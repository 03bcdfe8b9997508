#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup configuration for the usage billing engine.
"""

from setuptools import setup, find_namespace_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="isa-usage-billing",
    version="0.1.0",
    author="isA Platform",
    author_email="dev@isa-platform.com",
    description="Usage-based subscription billing: pricing, invoicing and payment collection",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/isa-platform/isA_user",
    packages=find_namespace_packages(include=["core", "core.*", "microservices", "microservices.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.0.0",
        "tenacity>=8.0.0",
        "asyncpg>=0.29.0",  # PostgreSQL async client
        "nats-py>=2.6.0",  # JetStream event bus
        "httpx>=0.25.0",  # Service-to-service HTTP
        "stripe>=8.0.0",  # Payment processor
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    include_package_data=True,
    package_data={
        "microservices.billing_service": ["migrations/*.sql"],
    },
)
