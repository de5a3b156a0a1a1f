from setuptools import setup, find_packages

setup(
    name='releasehub',
    version='0.1.0',
    description='Release download and auto-update server for desktop applications',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    python_requires='>=3.10',
    install_requires=[
        'aiohttp>=3.9',
        'aiofiles',
        'packaging>=22',
        'platformdirs',
        'PyYAML',
        'rich',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'pytest-mock',
        ],
    },
    entry_points={
        'console_scripts': [
            'releasehub=releasehub.cli:main',
        ],
    },
)
