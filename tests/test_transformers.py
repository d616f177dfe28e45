"""Tests for the built-in transformer catalog."""

import pytest

from pipeport.registry import ConstructRegistry, RuleKind
from pipeport.transformers import DEFAULT_TRANSFORMERS, register_defaults
from pipeport.transformers.defaults import (
    CACHE_ACTION,
    UPLOAD_ARTIFACT_ACTION,
    convert_after_script,
    convert_artifacts,
    convert_before_script,
    convert_cache,
    convert_junit_report,
    convert_script,
)


class TestScripts:
    """Tests for before_script/script/after_script."""

    def test_script_lines_joined(self):
        assert convert_script(["make", "make test"]) == {"name": "script", "run": "make\nmake test"}

    def test_nested_lists_flattened(self):
        """!reference expands to nested lists."""
        assert convert_before_script([["echo a", "echo b"], "echo c"])["run"] == "echo a\necho b\necho c"

    def test_single_string(self):
        assert convert_script("make")["run"] == "make"

    def test_after_script_always_runs(self):
        step = convert_after_script(["cleanup"])
        assert step["if"] == "always()"

    def test_empty_script_rejected(self):
        with pytest.raises(ValueError, match="no commands"):
            convert_script([])


class TestArtifacts:
    """Tests for artifacts."""

    def test_paths_and_retention(self):
        step = convert_artifacts({"paths": ["dist/", "build/"], "expire_in": "1 week"})
        assert step["uses"] == UPLOAD_ARTIFACT_ACTION
        assert step["with"] == {"name": "artifacts", "path": "dist/\nbuild/", "retention-days": 7}
        assert "if" not in step

    def test_retention_rounds_up_to_days(self):
        step = convert_artifacts({"paths": ["out"], "expire_in": "3 hours"})
        assert step["with"]["retention-days"] == 1

    def test_never_expires(self):
        step = convert_artifacts({"paths": ["out"], "expire_in": "never"})
        assert "retention-days" not in step["with"]

    def test_exclude_and_name(self):
        step = convert_artifacts({"name": "bundle", "paths": ["out/"], "exclude": ["out/*.tmp"]})
        assert step["with"]["name"] == "bundle"
        assert step["with"]["path"] == "out/\n!out/*.tmp"

    @pytest.mark.parametrize("when,condition", [("always", "always()"), ("on_failure", "failure()")])
    def test_when(self, when, condition):
        assert convert_artifacts({"paths": ["out"], "when": when})["if"] == condition

    def test_untracked_uploads_working_tree(self):
        step = convert_artifacts({"untracked": True, "exclude": ["*.log"]})
        assert step["with"]["path"] == ".\n!*.log"

    def test_untracked_with_paths(self):
        step = convert_artifacts({"untracked": True, "paths": ["dist/"]})
        assert step["with"]["path"] == "dist/\n."

    def test_no_paths_rejected(self):
        with pytest.raises(ValueError, match="no paths"):
            convert_artifacts({"expire_in": "1 day"})

    def test_non_mapping_rejected(self):
        with pytest.raises(ValueError, match="mapping"):
            convert_artifacts(["dist/"])


class TestJunitReport:
    """Tests for artifacts.junit."""

    def test_single_path(self):
        step = convert_junit_report("report.xml")
        assert step["if"] == "always()"
        assert step["with"] == {"name": "junit-report", "path": "report.xml"}

    def test_multiple_paths(self):
        assert convert_junit_report(["a.xml", "b.xml"])["with"]["path"] == "a.xml\nb.xml"


class TestCache:
    """Tests for cache."""

    def test_string_key(self):
        step = convert_cache({"key": "deps", "paths": [".venv"]})
        assert step["uses"] == CACHE_ACTION
        assert step["with"] == {"path": ".venv", "key": "deps"}

    def test_files_key(self):
        step = convert_cache({"key": {"files": ["poetry.lock"], "prefix": "py"}, "paths": [".venv"]})
        assert step["with"]["key"] == "py-${{ hashFiles('poetry.lock') }}"

    def test_default_key(self):
        assert convert_cache({"paths": ["node_modules"]})["with"]["key"] == "${{ github.job }}"

    def test_list_of_caches_merged(self):
        step = convert_cache([
            {"key": "a", "paths": ["x", "y"]},
            {"key": "b", "paths": ["y", "z"]},
        ])
        assert step["with"] == {"path": "x\ny\nz", "key": "a"}

    def test_no_paths_rejected(self):
        with pytest.raises(ValueError):
            convert_cache({"key": "a"})


class TestRegisterDefaults:
    """Tests for register_defaults."""

    def test_every_default_registered(self):
        registry = ConstructRegistry()
        register_defaults(registry)
        assert registry.defaults() == sorted(DEFAULT_TRANSFORMERS)
        for identifier in DEFAULT_TRANSFORMERS:
            assert registry.resolve(identifier).kind == RuleKind.DEFAULT

    def test_origin_is_module(self):
        registry = ConstructRegistry.create_default()
        assert registry.resolve("script").origin == "pipeport.transformers.defaults"
