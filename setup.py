"""
Setup configuration for blockforge package.
"""

from setuptools import setup, find_packages

setup(
    name="blockforge",
    version="0.1.0",
    description="Content-block extraction and visual refinement for rendered web pages",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "pydantic>=2.0.0",
        "logfire>=0.40.0",
        "tenacity>=8.2.0",
        "anthropic>=0.40.0",
        "playwright>=1.40.0",
        "Pillow>=10.0.0",
        "numpy>=1.24.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "blockforge=blockforge.cli.main:cli",
        ],
    },
)
