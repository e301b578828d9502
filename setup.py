from setuptools import setup, find_packages

setup(
    name="vmaf-analyzer",
    version="0.1.0",
    packages=find_packages(include=["vmaf_analyzer", "vmaf_analyzer.*"]),
    install_requires=[
        "ffmpeg-python",
        "rich>=13.0.0",  # Explicit minimum version
        "psutil",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "vmaf-analyzer=vmaf_analyzer.__main__:main",
        ],
    },
    python_requires=">=3.9",
)
