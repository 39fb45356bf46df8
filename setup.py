"""Setup script for meshdeploy."""

from setuptools import find_packages, setup

setup(
    name="meshdeploy",
    version="0.1.0",
    description="Provision GKE with Cloud Service Mesh and deploy the Bookinfo sample",
    author="meshdeploy maintainers",
    packages=find_packages(include=["meshdeploy", "meshdeploy.*"]),
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.24.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "meshdeploy=meshdeploy.cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
