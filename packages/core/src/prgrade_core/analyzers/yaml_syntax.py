from __future__ import annotations

import yaml

from prgrade_core.analyzers.base import BaseAnalyzer
from prgrade_core.models import DiffFile, Issue
from prgrade_core.utils.code import is_workflow_yaml


class YamlSyntaxAnalyzer(BaseAnalyzer):
    """Parse CI/CD and compose YAML files and report syntax errors.

    Only complete file contents are parsed: a diff hunk on its own is rarely
    valid YAML.
    """

    name = "yaml"

    def applies_to(self, file: DiffFile) -> bool:
        return file.content_complete and is_workflow_yaml(file.filename)

    def analyze_file(self, file: DiffFile) -> list[Issue]:
        try:
            for _ in yaml.safe_load_all(file.content):
                pass
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            line = mark.line + 1 if mark is not None else 0
            problem = getattr(e, "problem", None) or str(e)
            return [Issue(file.filename, line, "error", f"Invalid YAML: {problem}", rule="yaml-syntax")]
        return []
