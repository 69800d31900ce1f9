from setuptools import setup, find_packages

setup(
    name="stepgraph",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.0",
        "tenacity>=8.0",
        "mirascope>=1.0,<2.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    python_requires=">=3.9",
    description="stateful graph execution engine for agent and workflow pipelines",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
