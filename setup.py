from setuptools import setup, find_packages
from pathlib import Path

setup(
    name="annostore",
    version=Path("./annostore/VERSION").read_text().strip(),
    description="In-memory, indexed, observable store for annotations",
    packages=find_packages(exclude=["tests"]),
    package_data={"annostore": ["VERSION"]},
    python_requires=">=3.8",
    install_requires=["easydict"],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["annostore=annostore.cli:main"]},
)
