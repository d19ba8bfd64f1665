from setuptools import setup, find_packages
setup(
    name="listing_deck",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "httpx>=0.24",
        "pydantic>=2.0",
        "requests>=2.28",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        'console_scripts': [
            'listing_deck=listing_deck.__main__:_safe_main'
        ]
    }
)
