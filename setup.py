import os
import setuptools

def read(fname):
  with open(os.path.join(os.path.dirname(__file__), fname), 'rt') as f:
    return f.read()

def requirements():
  with open(os.path.join(os.path.dirname(__file__), 'requirements.txt'), 'rt') as f:
    return f.readlines()

setuptools.setup(
  name="dvidnode",
  version="0.3.0",
  python_requires=">=3.8",
  install_requires=requirements(),
  extras_require={
    "test": [ "pytest", "pytest-cov", "requests_mock" ],
  },
  author="dvidnode contributors",
  packages=setuptools.find_packages(exclude=('test',)),
  description="A client for reading and writing volumes, labels, graphs, and ROIs on a DVID version node.",
  long_description=read('README.md'),
  long_description_content_type="text/markdown",
  license = "License :: OSI Approved :: BSD License",
  keywords = "dvid volumetric-data numpy connectomics microscopy labelgraph roi",
  classifiers=[
    "Intended Audience :: Developers",
    "Development Status :: 4 - Beta",
    "License :: OSI Approved :: BSD License",
    "Programming Language :: Python",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3.8",
    "Programming Language :: Python :: 3.9",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Topic :: Scientific/Engineering",
    "Intended Audience :: Science/Research",
    "Topic :: Utilities",
  ],
)
