#!/usr/bin/env python
# -*- encoding: utf-8 -*-

from setuptools import find_packages
from setuptools import setup


setup(
    name='layer-tracer',
    version='1.0.0',
    license='Apache-2.0',
    description='Find the container image layer that introduced each installed package.',
    long_description='Find the container image layer that introduced each installed package.',
    author='nexB Inc.',
    author_email='info@nexb.com',
    url='https://github.com/nexB/container-inspector',
    packages=find_packages('src'),
    package_dir={'': 'src'},
    include_package_data=True,
    zip_safe=False,
    python_requires='>=3.7',
    classifiers=[
        # complete classifier list: http://pypi.python.org/pypi?%3Aaction=list_classifiers
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Operating System :: POSIX :: Linux',
        'Operating System :: MacOS :: MacOS X',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: Utilities',
    ],
    keywords=['container', 'docker', 'oci', 'layer', 'sbom'],
    install_requires=[
        'attrs >= 19.2',
        'click',
        'commoncode',
    ],
    extras_require={
        'testing': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'layer_tracer=layer_tracer.cli:layer_tracer',
            'layer_tracer_chain=layer_tracer.cli:layer_tracer_chain',
        ],
    },
)
