"""
deconfuser: Deobfuscator for JS-Confuser Output

Reverses the structural transforms of the JS-Confuser obfuscator:
1. Template matching over the ESTree program tree
2. Sandboxed partial evaluation in fresh V8 isolates
3. Abstract interpretation of array-virtualized parameters
4. Fixed-point constant folding and branch pruning
"""

from setuptools import setup, find_packages

setup(
    name="deconfuser",
    version="1.0.0",
    description="Deobfuscator for JavaScript produced by JS-Confuser",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    packages=find_packages(include=["deconfuser", "deconfuser.*"]),
    install_requires=[
        "esprima>=4.0.1",
        "escodegen>=2.0.0",
        "mini-racer>=0.12.0",
        "jsbeautifier>=1.14",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "deconfuser = deconfuser.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Disassemblers",
        "Topic :: Security",
    ],
)
