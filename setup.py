from setuptools import setup, find_packages

setup(
    name="node-reconciler",
    version="0.3.0",
    description=(
        "Converge container runtime configuration and the Fluentd logging "
        "agent across cluster nodes."
    ),
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    package_data={"node_reconciler.render.assets": ["*"]},
    python_requires=">=3.9",
    install_requires=[
        "typer>=0.9",
        "rich>=13",
        "pydantic>=2",
        "PyYAML>=6",
        "ruamel.yaml>=0.17",
        "cli-core-yo>=1.0,<1.2.2",
        "paramiko>=3.0",
    ],
    extras_require={"test": ["pytest>=7"]},
    entry_points={
        "console_scripts": [
            "node-reconciler=node_reconciler.cli:main",
        ],
    },
)
