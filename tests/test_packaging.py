"""
Tests for project metadata.
"""

from __future__ import annotations

import re
from pathlib import Path


ROOT = Path(__file__).resolve().parent.parent


class TestPyproject:
    """Tests for pyproject.toml."""

    def test_readme_exists(self) -> None:
        """Test the declared readme is a file shipped with the project."""
        text = (ROOT / "pyproject.toml").read_text()
        match = re.search(r'^readme = "([^"]+)"$', text, re.MULTILINE)

        assert match is not None
        assert match.group(1) == "README.md"
        assert (ROOT / match.group(1)).is_file()
