from setuptools import setup

setup(
    name='nftbridge',
    version='0.1.0',
    description='Cross-chain NFT bridge: ledger contract, deployment reconciler and bridge orchestrator',
    author='nftbridge contributors',
    package_dir={'': 'src'},
    packages=['nftbridge', 'nftbridge.cli'],
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'click>=7.0',
        'rich>=9.0',
        'aiohttp>=3.8',
    ],
    extras_require={
        'test': [
            'pytest>=7.0',
            'pytest-asyncio>=0.21',
        ],
    },
    entry_points={
        'console_scripts': [
            'nftbridge = nftbridge.cli.main:cli'
        ]
    },
    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
