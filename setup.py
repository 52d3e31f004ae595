# voip-utility/setup.py

from setuptools import setup, find_packages

setup(
    name="voip_utility",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "numpy>=1.24",
        "pydantic>=2.0",
        "PyYAML>=6.0",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    python_requires=">=3.9",
        entry_points={
        "console_scripts": [
            "voip-utility=voip_utility.cli.__main__:main"
        ]
    },
    description="Scripted SIP call scenario testing with tone and beep verification",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
    ],
)
