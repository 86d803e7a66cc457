from setuptools import setup
from pathlib import Path

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="cinepointer",
    version="0.3.0",
    description="Timeline events and screencast recording for zendriver browser journeys",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=[
        "cinepointer",
        "cinepointer.timeline",
        "cinepointer.recording",
        "cinepointer.driver",
    ],
    install_requires=[
        "zendriver",
        "Pillow",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "cinepointer-doctor=cinepointer.diagnostics:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
)
