"""Setup configuration for myturn"""

from setuptools import setup, find_packages

setup(
    name="my-turn-pr-review",
    version="0.1.0",
    description=(
        "CLI tool that watches GitHub repositories and reports pull requests, "
        "review requests and comments where it is your turn to act."
    ),
    author="My Turn PR Review Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "my-turn=myturn.main:main",
        ],
    },
)
