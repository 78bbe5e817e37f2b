"""
Setup script for Mining Footprint Overlap Model package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / 'README.md'
if readme_file.exists():
    with open(readme_file, 'r', encoding='utf-8') as f:
        long_description = f.read()
else:
    long_description = 'Mining Footprint Overlap Model - Monte Carlo overlap of mining footprints with classified areas'

# Read requirements
requirements_file = Path(__file__).parent / 'requirements.txt'
if requirements_file.exists():
    with open(requirements_file, 'r', encoding='utf-8') as f:
        requirements = [
            line.strip() for line in f
            if line.strip() and not line.strip().startswith('#')
        ]
else:
    requirements = [
        'numpy>=1.24.0', 'pandas>=2.0.0', 'scipy>=1.11.0,<1.15', 'matplotlib>=3.7.0',
        'geopandas>=0.14.0', 'shapely>=2.0.0', 'pyproj>=3.5.0', 'rasterio>=1.3.0', 'affine<3',
        'joblib>=1.3.0', 'openpyxl>=3.1.0',
    ]

setup(
    name='mining-footprint-overlap',
    version='1.0.0',
    author='Mining Footprint Research Team',
    description='Monte Carlo estimation of mining footprint overlap with classified areas',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(exclude=['tests', 'tests.*']),
    py_modules=['run_pipeline'],
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'Topic :: Scientific/Engineering :: GIS',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    python_requires='>=3.9',
    install_requires=requirements,
    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=4.0.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'mining-overlap=run_pipeline:main',
        ],
    },
)
