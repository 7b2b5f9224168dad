"""
rtp-overlay-infrastructure packaging setup.

Installs the CDK application (``infrastructure``) and the ``rtp-overlay``
operator CLI. The Lambda handlers under ``lambda/`` ship as a CDK asset and
are not installed.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="rtp-overlay-infrastructure",
    version="1.0.0",
    description="Multi-stack AWS deployment for the RTP Overlay accounts payable pipeline",
    packages=find_namespace_packages(include=["infrastructure", "infrastructure.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aws-cdk-lib>=2.150.0",
        "constructs>=10.0.0",
        "boto3>=1.39.0",
        "botocore",
    ],
    extras_require={
        "test": [
            "pytest",
            "moto>=5.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rtp-overlay=infrastructure.cli:main",
        ],
    },
)
