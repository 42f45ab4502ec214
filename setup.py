import re
from setuptools import setup, find_packages

# Read version from video_compare/__init__.py
with open("video_compare/__init__.py") as f:
    version = re.search(r'__version__\s*=\s*"(.+?)"', f.read()).group(1)

setup(
    name="video_compare",
    version=version,
    packages=find_packages(exclude=["test", "test.*"]),
    python_requires=">=3.8",
    install_requires=[
        "matplotlib",
        "numpy",
        "opencv-python",
        "scikit-image",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        'console_scripts': [
            'video_compare=video_compare.main:main',
        ],
    },
)
