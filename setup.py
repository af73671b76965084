from setuptools import setup, find_packages


setup(
    name="carpack",
    version="0.1",
    packages=find_packages(exclude=("scripts", "scripts.*")),
    description="Pack filesystem trees into content-addressed archives (CARv1) and unpack them again.",
    install_requires=[
        "multiformats>=0.3.1",
        "cbor2>=5.4.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "carpack=carpack.cli:main",
        ]
    },
)
