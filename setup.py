"""Setup script for the coding_agent package."""

from setuptools import setup, find_packages

setup(
    name="coding-agent",
    version="0.1.0",
    description="Terminal coding agent: streaming turn loop, safety-gated tools, context compaction and MCP servers",
    packages=find_packages(include=["coding_agent", "coding_agent.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "httpx>=0.25.0",
    ],
    extras_require={
        "anthropic": ["anthropic>=0.40"],
        "tests": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
        "all": [
            "anthropic>=0.40",
        ],
    },
    entry_points={
        "console_scripts": [
            "coding-agent=coding_agent.main:main",
        ],
    },
    package_data={
        "coding_agent": ["config/default_config.yaml"],
    },
)
