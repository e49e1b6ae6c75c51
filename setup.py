# -*- coding: utf-8 -*-
from setuptools import setup, find_packages

with open('requirements.txt') as fp:
    install_requires = [line.strip() for line in fp if line.strip() and not line.startswith('#')]

setup(
    name='django-jsepa',
    version='1.0.0',
    author=u'Jani Kajala',
    author_email='kajala@gmail.com',
    packages=find_packages(exclude=['project', 'venv']),
    include_package_data=True,
    url='',
    license='MIT licence, see LICENCE.txt',
    description='SEPA credit transfer transaction (pain.001 CdtTrfTxInf) support for Django projects',
    long_description=open('README.md').read(),
    zip_safe=True,
    install_requires=install_requires,
    extras_require={
        'test': ['pytest', 'pytest-django'],
    },
)
