from setuptools import setup, find_packages

setup(
    name="hmm-battery-optimizer",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "numpy>=1.22.0",
        "pandas>=1.4.0",   # Rolling windows and period grouping
        "pulp>=2.7.0",     # For the perfect-foresight LP benchmark
        "pyyaml>=5.4.0",   # YAML configuration files
    ],
    extras_require={
        'dev': [
            'pytest>=6.0.0',
            'black>=21.5b2',
            'mypy>=0.900',
        ],
    },
    description="Battery arbitrage dispatch optimization with HMM-seeded differential evolution",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Scientific/Engineering :: Energy",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    package_data={
        "bessopt": ["py.typed"],
    },
    zip_safe=False,
)
