from setuptools import setup, find_packages

setup(
    name="backup-retention",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "psutil>=5.9.0",
        "python-dotenv>=1.0.0",
        "PyYAML>=6.0",
        "tabulate>=0.9.0",
        "prometheus-client>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.18.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "backup-retention=backup_retention.cli:main",
        ],
    },
    python_requires=">=3.8",
)
