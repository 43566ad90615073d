from setuptools import setup, find_packages

setup(
    name="ntp-responder",
    version="0.1.0",
    packages=find_packages(include=["responder", "responder.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "fastapi>=0.110",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "httpx>=0.27",
        ],
    },
    entry_points={
        "console_scripts": [
            "ntp-responder=responder.app.cli:main",
        ],
    },
)
