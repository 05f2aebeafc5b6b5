from setuptools import setup, find_packages

setup(
    name="redeem-classifiers",
    version="0.1.0",
    description="Semi-supervised rescoring of peptide-spectrum matches with target-decoy q-values",
    packages=find_packages(include=["redeem_classifiers", "redeem_classifiers.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "pandas",
        "scikit-learn",
        "xgboost",
        "loguru",
        "click",
        "tabulate",
    ],
    extras_require={"test": ["pytest"]},
)
