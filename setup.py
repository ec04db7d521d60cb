#!/usr/bin/env python3
"""
Setup script for Folio - static blog generator.
"""

from setuptools import setup, find_packages
import os

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='folio',
    version='1.0.0',
    description='A static blog generator with categories, tags, archives and feeds',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(include=['folio_pkg', 'folio_pkg.*']),
    package_data={
        'folio_pkg': [
            'templates/*.html',
            'templates/**/*.html',
        ],
    },
    include_package_data=True,
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Internet :: WWW/HTTP :: Site Management',
        'Topic :: Software Development :: Code Generators',
        'Topic :: Text Processing :: Markup :: HTML',
    ],
    python_requires='>=3.8',
    install_requires=[
        'Jinja2>=3.0',
        'Markdown>=3.4',
        'pymdown-extensions>=10.0',
        'Pygments>=2.12',
        'PyYAML>=6.0',
        'csscompressor>=0.9.5',
        'rjsmin>=1.2',
    ],
    extras_require={
        'test': ['pytest>=7.0'],
    },
    entry_points={
        'console_scripts': [
            'folio=folio_pkg.cli:main',
        ],
    },
    keywords='static site generator, blog, markdown, jinja2, rss',
)
