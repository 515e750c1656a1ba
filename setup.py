"""
marketrl - Package Configuration
"""

from setuptools import setup, find_packages

setup(
    name="marketrl",
    version="0.1.0",
    description="Actor-critic policy trainer for discrete-action market agents",
    author="NeuralBlitz",
    packages=find_packages(include=["marketrl", "marketrl.*"]),
    python_requires=">=3.9",
    install_requires=[
        "torch>=2.0",
        "numpy>=1.21",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "scipy>=1.7",
            "black>=23.0",
            "mypy>=1.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
)
