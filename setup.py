from setuptools import setup


setup(
    name="sheet-resolver",
    version="0.1.0",
    description="Heuristic column resolution for loosely structured spreadsheet exports",
    packages=["sheet_resolver"],
    python_requires=">=3.9",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "requests",
    ],
    entry_points={
        "console_scripts": [
            "sheet-resolver=sheet_resolver.cli:main",
        ]
    },
)
