from setuptools import setup, find_packages

setup(
    name="signalforge",
    version="0.1.0",
    python_requires=">=3.10",
    packages=find_packages(exclude=["signalforge.tests", "signalforge.tests.*"]),
    install_requires=[
        "click>=8.0.0",
        "fastapi>=0.95.0",
        "uvicorn>=0.21.0",
        "pydantic>=2.0.0",
        "httpx>=0.24.1",
        "apscheduler>=3.10,<4",
        "feedparser>=6.0.0",
        "tzdata>=2023.3",
    ],
    extras_require={
        "dev": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "signalforge=signalforge.cli.signalforge:main",
            "signalforge-backend=signalforge.ai_news.__main__:main",
        ]
    },
)
