from setuptools import setup, find_packages

setup(
    name="earpiece",
    version="0.1.0",
    description="Live interview audio capture, transcription and coaching dispatch",
    author="",
    python_requires=">=3.8",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "google-cloud-speech>=2.16.0",
        "google-auth>=2.10.0",
        "rich>=12.5.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "numpy>=1.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "earpiece=earpiece.main:main",
        ],
    },
)
