from setuptools import setup, find_packages

setup(
    name="powerscan",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "aiohttp>=3.9.0",
        "PyYAML>=6.0",
        "netifaces>=0.11.0",
    ],
    extras_require={
        "usb": ["pyusb>=1.2.1"],
        "snmp": ["pysnmp>=7.1.0"],
        "avahi": ["zeroconf>=0.131.0"],
        "ipmi": ["pyghmi>=1.5.60"],
        "serial": ["pyserial>=3.5"],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "powerscan=powerscan.cli:main",
        ],
    },
    python_requires=">=3.11",
)
