from setuptools import setup, find_packages

setup(
    name="sharing_detector",
    version="0.1.0",
    packages=find_packages(where="."),
    package_dir={"": "."},
    install_requires=[
        "pandas>=1.4.1",
        "flask>=2.0.3",
        "sqlalchemy>=1.4.31",
        "pyyaml",
        "python-dotenv"
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'sharing-detector=sharing_detector.main:main',
        ],
    },
    author="Network Security Team",
    description="Detects subscribers sharing their connection behind a router from TTL fingerprints on MikroTik NAS devices",
    keywords="network, isp, mikrotik, ttl, connection sharing",
    python_requires=">=3.8",
)
