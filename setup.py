"""
studyscribe: setuptools build script.

Usage:
    # Development (editable install):
    pip install -e .

    # Run the pipeline:
    studyscribe submit youtube "https://www.youtube.com/watch?v=..."

    # Tests:
    python -m unittest discover -s tests

yt-dlp, ffmpeg and ffprobe must be on PATH at runtime.
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "studyscribe"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Media acquisition and chunked speech-to-text transcription pipeline",
    packages=find_namespace_packages(include=["studyscribe", "studyscribe.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
        "google-generativeai>=0.8.0",
        "yt-dlp>=2024.1.0",
    ],
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "studyscribe=main:main",
        ],
    },
)
