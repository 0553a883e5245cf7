"""Setup script for the tool coordinator package."""

from setuptools import setup, find_packages

setup(
    name="tool-coordinator",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "httpx>=0.27",
        "prometheus-client>=0.20",
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "python-dotenv>=1.0",
        "structlog>=24.1",
        "tenacity>=8.2",
        "uvicorn>=0.29",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="Multi-tenant tool coordination: circuit breakers, tenant bulkheads and plan execution",
    author="Tool Coordinator Team",
)
