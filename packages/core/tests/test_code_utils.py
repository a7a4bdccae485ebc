"""Tests for file classification and text helpers."""

from prgrade_core.utils.code import (
    is_code_file,
    is_dockerfile,
    is_lintable,
    is_workflow_yaml,
    patch_new_side,
    truncate_lines,
)


class TestIsCodeFile:
    def test_python_file_is_code(self):
        assert is_code_file("app/services/user.py") is True

    def test_image_is_not_code(self):
        assert is_code_file("assets/logo.png") is False

    def test_lock_file_is_not_code(self):
        assert is_code_file("poetry.lock") is False

    def test_case_insensitive(self):
        assert is_code_file("image.PNG") is False


class TestClassifiers:
    def test_lintable_extensions(self):
        assert is_lintable("src/App.tsx") is True
        assert is_lintable("tool.py") is True
        assert is_lintable("README.md") is False

    def test_dockerfile_variants(self):
        assert is_dockerfile("Dockerfile") is True
        assert is_dockerfile("deploy/Dockerfile.prod") is True
        assert is_dockerfile("api.dockerfile") is True
        assert is_dockerfile("docs/dockerfiles.md") is False

    def test_workflow_yaml(self):
        assert is_workflow_yaml(".github/workflows/ci.yml") is True
        assert is_workflow_yaml("docker-compose.yaml") is True
        assert is_workflow_yaml(".gitlab-ci.yml") is True
        assert is_workflow_yaml("config/settings.yml") is False
        assert is_workflow_yaml(".github/workflows/README.md") is False


class TestTextHelpers:
    def test_patch_new_side_drops_removed_lines(self):
        patch = "@@ -1,3 +1,3 @@\n keep\n-old\n+new"
        assert patch_new_side(patch) == "keep\nnew"

    def test_truncate_lines_under_limit(self):
        assert truncate_lines("a\nb", 5) == ("a\nb", False)

    def test_truncate_lines_over_limit(self):
        text, truncated = truncate_lines("a\nb\nc", 2)
        assert truncated is True
        assert text == "a\nb\n... (truncated)"
