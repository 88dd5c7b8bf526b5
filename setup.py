from setuptools import setup, find_namespace_packages

setup(
    name="ervilla",
    version="0.1.0",
    description="Containers for test suites, supervised through podman",
    packages=find_namespace_packages(where="src", include=["ervilla", "ervilla.*"]),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
        "SQLAlchemy>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "psutil>=5.9",
        ],
    },
    entry_points={
        "console_scripts": [
            "ervilla=ervilla.CLI.main:main",
        ],
    },
)
