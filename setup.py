from setuptools import setup, find_packages
from pathlib import Path


BASE_DIR = Path(__file__).parent

VERSION_FILE = BASE_DIR / "dimsenet" / "_version.py"
with open(VERSION_FILE) as f:
    exec(f.read())

with open(BASE_DIR / "README.rst", "r") as f:
    long_description = f.read()

setup(
    name="dimsenet",
    packages=find_packages(include=["dimsenet", "dimsenet.*"]),
    include_package_data=True,
    version=__version__,
    zip_safe=False,
    description="A DICOM Upper Layer association and DIMSE-C messaging engine",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    license="MIT",
    keywords="dicom network dimse association acse python medicalimaging pydicom",
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Intended Audience :: Developers",
        "Intended Audience :: Healthcare Industry",
        "Development Status :: 3 - Alpha",
        "Natural Language :: English",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Medical Science Apps.",
        "Topic :: Software Development :: Libraries",
    ],
    install_requires=["pydicom>=2.2.0"],
    extras_require={  # will also install from `install_requires`
        "tests": ["pytest"],
    },
    python_requires=">=3.10",
)
