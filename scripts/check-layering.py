#!/usr/bin/env python3
"""
Fail the build if the layers leak into each other:

* services/controllers must not touch connections or raw SQL
* services must not import Flask
* the reconciliation engine must stay free of database access
"""

import sys
from pathlib import Path


DATA_LAYER_TOKENS = [
    "conn.execute",
    "transactional_connection(",
    "sa_connection(",
    "db.session",
    "db.engine",
]

FLASK_TOKENS = [
    "from flask import",
    "import flask",
]

PURE_MODULE_TOKENS = [
    "from repositories",
    "from extensions",
    "import sqlalchemy",
    "from sqlalchemy",
]

PURE_MODULES = [Path("backend/services/reconciliation.py")]


def scan(files, tokens):
    violations = []
    for file in files:
        text = file.read_text(encoding="utf-8")
        for idx, line in enumerate(text.splitlines(), start=1):
            for token in tokens:
                if token in line:
                    violations.append(f"{file}:{idx}: {line.strip()}")
                    break
    return violations


def python_files(root):
    return sorted(Path(root).rglob("*.py"))


def main() -> int:
    violations = []
    violations += scan(
        python_files("backend/services") + python_files("backend/controllers"),
        DATA_LAYER_TOKENS,
    )
    violations += scan(python_files("backend/services"), FLASK_TOKENS)
    violations += scan(PURE_MODULES, PURE_MODULE_TOKENS)
    if violations:
        print("Layering violations found:")
        for v in violations:
            print(v)
        return 1
    print("Layering check passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
