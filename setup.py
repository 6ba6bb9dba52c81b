#!/usr/bin/env python3

import os
from setuptools import setup, find_packages

here = os.path.abspath(os.path.dirname(__file__))

readme_path = os.path.join(here, "README.md")
with open(readme_path, encoding="utf-8") as f:
    long_description = f.read()

version_path = os.path.join(here, "rws_lambda", "version.py")
version_dict = {}
with open(version_path) as f:
    exec(f.read(), version_dict)
__version__ = version_dict.get("__version__", "1.0.0")

# Core requirements
install_requires = []
req_path = os.path.join(here, "requirements.txt")
if os.path.exists(req_path):
    with open(req_path, encoding="utf-8") as f:
        install_requires = [
            line.strip() for line in f if not line.startswith("#") and line.strip()
        ]
else:
    # Define core requirements manually if file not found
    install_requires = [
        "boto3>=1.26",
        "botocore>=1.29",
        "click>=7.1.2",
    ]

extras_require = {"test": []}

req_file = os.path.join(here, "requirements.test.txt")
if os.path.exists(req_file):
    with open(req_file, encoding="utf-8") as f:
        extras_require["test"] = [
            line.strip() for line in f if not line.startswith("#") and line.strip()
        ]
else:
    extras_require["test"] = ["testtools>=2.4.0", "pytest"]

setup(
    name="rws-lambda",
    version=__version__,
    description="AWS Lambda and EFS deployment tool for RWS functions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: System :: Distributed Computing",
    ],
    keywords="serverless, faas, lambda, efs, aws, deployment",
    packages=find_packages(where=here, exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "rws-lambda=rws_lambda.cli:main",
        ],
    },
)
