"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="speaker-portal-realtime",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"speaker_portal": ["templates/email/*.html"]},
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "pydantic>=2.5",
        "pydantic-settings>=2.0",
        "structlog>=23.1",
        "prometheus-client>=0.17",
        "opentelemetry-instrumentation-fastapi>=0.41b0",
        "PyJWT>=2.8",
        "redis>=5.0.1",
        "jinja2>=3.1",
        "resend>=0.7",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
)
