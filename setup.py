from setuptools import setup, find_packages

setup(
    name="opsguard",
    version="0.1.0",
    packages=find_packages(include=["opsguard", "opsguard.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "uvicorn",
        "pydantic",
        "pydantic-settings",
        "python-dotenv",
        "httpx",
        "redis",
        "sqlalchemy",
        "psutil",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
    entry_points={
        "console_scripts": [
            "opsguard=opsguard.app.cli:main",
        ],
    },
)
