from setuptools import setup, find_packages


setup(
    name="ai-contextgen",
    version="0.1",
    packages=find_packages(include=["contextgen", "contextgen.*"]),
    description="Deterministic, tamper-evident snapshots of a source tree as Markdown or a compact text blob.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "contextgen=contextgen.cli:main",
        ]
    },
)
