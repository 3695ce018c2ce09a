#!/usr/bin/env python
"""Setup script for bbfetch. Pure python: the binary `BigBed`_ structures
that once required compiled extensions are decoded with :mod:`struct`,
:mod:`zlib`, and numpy.
"""
from setuptools import setup, find_packages

bbfetch_version = "0.1.0"


#===============================================================================
# Package metadata
#===============================================================================

with open("README.rst") as f:
    long_description = f.read()

install_requires = [
    "numpy>=1.9.4",
    "requests>=2.20",
    "termcolor",
]

tests_require = [
    "pytest>=6.0",
]


#===============================================================================
# Program body
#===============================================================================

setup(

    name             = "bbfetch",
    version          = bbfetch_version,
    long_description =  long_description,
    long_description_content_type = "text/x-rst",

    description      = "Asynchronous range queries against local and remote BigBed files",
    license          = "BSD 3-Clause",
    keywords         = "bigbed genomics bioinformatics http range requests asyncio",
    platforms        = "OS Independent",

    classifiers      = [
         'Development Status :: 3 - Alpha',
         'Programming Language :: Python :: 3.8',
         'Programming Language :: Python :: 3.12',

         'Topic :: Scientific/Engineering :: Bio-Informatics',
         'Topic :: Software Development :: Libraries',

         'Intended Audience :: Science/Research',
         'Intended Audience :: Developers',

         'License :: OSI Approved :: BSD License',
         'Operating System :: POSIX',
         'Natural Language :: English',
    ],

    zip_safe = False,
    packages = find_packages(),
    package_dir = {
        "bbfetch" : "bbfetch",
    },

    python_requires  = ">=3.8",
    install_requires = install_requires,
    extras_require   = {
        "test" : tests_require,
    },

) # yapf: disable
