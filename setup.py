"""
Setup script for the distopt package.
"""
from setuptools import setup, find_packages

if __name__ == "__main__":
    setup(
        name="distopt",
        version="0.1.0",
        description="Distributed L-BFGS / TRON optimization of GLMs with class-balancing down-sampling",
        # The package code lives under the `distopt/` directory at the repository root.
        packages=find_packages(include=["distopt", "distopt.*"]),
        python_requires=">=3.8",
        install_requires=[
            "numpy",
            "scipy",
        ],
        extras_require={
            "test": ["pytest"],
        },
    )
