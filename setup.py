from setuptools import setup, find_packages

setup(
    name="gateflash",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "requests",
        "pyserial",
        "esptool",
        "tqdm",
        "rich",
        "argcomplete",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "gateflash=gateflash.main:main",
        ],
    },
    description="Select a board and firmware release, build its flash manifest and flash it.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
