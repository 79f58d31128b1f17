from setuptools import setup, find_packages

setup(
    name="reviewiq-backend",
    version="0.1.0",
    packages=find_packages(exclude=["reviewiq.tests", "reviewiq.tests.*"]),
    install_requires=[
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "pydantic>=2.0.0",
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.19.0",
        "python-dotenv>=1.0.0",
        "pyyaml>=6.0",
        "redis>=5.0.1",
        "celery>=5.3.0",
        "psutil>=5.9.0",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "reviewiq-server=reviewiq.main:main",
        ],
    },
    python_requires=">=3.10",
)
