from __future__ import annotations

import posixpath

NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".mp4",
    ".mp3",
    ".zip",
    ".tar",
    ".gz",
    ".lock",  # e.g. package-lock.json, poetry.lock
}

JS_EXTENSIONS = {".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs"}
PY_EXTENSIONS = {".py"}
LINT_EXTENSIONS = JS_EXTENSIONS | PY_EXTENSIONS

YAML_EXTENSIONS = {".yml", ".yaml"}

_WORKFLOW_DIRS = (".github/workflows/", ".circleci/")
_WORKFLOW_FILES = {
    ".gitlab-ci.yml",
    ".travis.yml",
    "azure-pipelines.yml",
    "bitbucket-pipelines.yml",
}


def extension(file_name: str) -> str:
    return posixpath.splitext(file_name.lower())[1]


def is_code_file(file_name: str) -> bool:
    return extension(file_name) not in NON_CODE_EXTENSIONS


def is_lintable(file_name: str) -> bool:
    return extension(file_name) in LINT_EXTENSIONS


def is_dockerfile(file_name: str) -> bool:
    base = posixpath.basename(file_name).lower()
    return base == "dockerfile" or base.startswith("dockerfile.") or base.endswith(".dockerfile")


def is_workflow_yaml(file_name: str) -> bool:
    """CI/CD and compose definitions: the YAML files whose syntax errors break a pipeline."""
    if extension(file_name) not in YAML_EXTENSIONS:
        return False
    lowered = file_name.lower()
    if any(d in lowered or lowered.startswith(d) for d in _WORKFLOW_DIRS):
        return True
    base = posixpath.basename(lowered)
    return base in _WORKFLOW_FILES or base.startswith(("docker-compose", "compose."))


def patch_new_side(patch: str) -> str:
    """Rebuild the post-change text covered by a unified diff hunk list."""
    lines = []
    for line in patch.splitlines():
        if line.startswith(("@@", "-", "\\")):
            continue
        if line.startswith(("+", " ")):
            lines.append(line[1:])
        else:
            lines.append(line)
    return "\n".join(lines)


def truncate_lines(text: str, max_lines: int) -> tuple[str, bool]:
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text, False
    return "\n".join(lines[:max_lines]) + "\n... (truncated)", True
