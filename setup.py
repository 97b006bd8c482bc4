#!/usr/bin/env python3

from setuptools import setup
import os

# Read long description safely
long_description = "Restrict a Hetzner Cloud firewall to Cloudflare IP ranges"
if os.path.exists("README.md"):
    with open("README.md", "r", encoding="utf-8") as f:
        long_description = f.read()

setup(
    name="cloudflare-hetzner-firewall",
    version="1.0.0",
    description="Restrict a Hetzner Cloud firewall to Cloudflare IP ranges",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Cloudflare Hetzner Firewall",
    py_modules=["update_firewall", "firewall_webhook"],
    python_requires=">=3.8",
    install_requires=[
        "requests>=2.27.0",
        "python-dotenv>=1.0.0",
        "flask>=2.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cf-hetzner-firewall=update_firewall:main",
            "cf-hetzner-firewall-scheduled=firewall_webhook:scheduled_main",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: System :: Networking :: Firewalls",
        "Topic :: Security",
    ],
)
