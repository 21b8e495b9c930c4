from pathlib import Path
from setuptools import setup, find_packages

README = (Path(__file__).parent / "README.md")
long_desc = README.read_text(encoding="utf-8") if README.exists() else "parkir-ops – parking data consistency engine"

setup(
    name="parkir-ops",
    version="0.1.0",
    description="parkir-ops – validation, sync, statistics, backups and recovery for parking availability data",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    author="parkir-ops",
    python_requires=">=3.11",
    packages=find_packages(include=["ops", "ops.*", "self_healing", "self_healing.*", "tools", "tools.*"]),
    include_package_data=True,
    package_data={"ops": ["parking_rules.yaml", "templates/*.j2"]},
    install_requires=[
        "requests>=2.32,<3",
        "pydantic>=2,<3",
        "python-dateutil>=2.9,<3",
        "PyYAML>=6,<7",
        "Jinja2>=3.1,<4",
        "rich>=13",
        "orjson>=3,<4",
    ],
    extras_require={
        "test": ["pytest>=8"],
    },
    entry_points={
        "console_scripts": [
            "parkir-check=ops.consistency_agent:main",
            "parkir-fix=ops.fix_statistics:main",
            "parkir-sync=ops.sync_config:main",
            "parkir-backup=ops.backup_manager:main",
            "parkir-updates=ops.process_updates:main",
            "parkir-monitor=ops.monitor_statistics:main",
            "parkir-health=ops.health_check:main",
            "parkir-recover=self_healing.heal:main",
            "parkir-audit=tools.audit_append:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
