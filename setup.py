"""
Setup configuration for the Inference Core package.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

# Read requirements from requirements.txt
requirements = []
try:
    with open(this_directory / 'requirements.txt') as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]
except FileNotFoundError:
    pass

setup(
    name="inference-core",
    version="0.1.0",
    author="Inference Core Team",
    description="Inference orchestration for local coding models: provider adapters, streaming, context fitting, failover and routing",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["inference_core", "inference_core.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Code Generators",
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
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "pytest-asyncio>=0.21.0",
            "aioresponses>=0.7.4",
            # aioresponses cannot build responses on aiohttp 3.14+ (stream_writer kwarg)
            "aiohttp<3.14",
        ],
    },
    keywords="llm inference ollama vllm llama.cpp openai failover streaming",
)
