"""Sphinx configuration for ACID Demo API documentation."""

import os
import sys
from datetime import datetime

sys.path.insert(0, os.path.abspath(".."))

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

project = "ACID Demo API"
current_year = datetime.now().year
copyright = f"{current_year}, ACID Demo"
author = "ACID Demo Team"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]


templates_path = ["_templates"]
exclude_patterns: list[str] = []

html_theme = "alabaster"
