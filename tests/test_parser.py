"""Tests for pipeport.parser.

Tests GitLab CI loading: extends, default inheritance, !reference,
artifacts splitting, job metadata and parse errors.
"""

import pytest

from pipeport.errors import ParseError
from pipeport.parser import DEFAULT_TRIGGERS, load_pipeline, parse_pipeline
from pipeport.schemas import DEFAULT_RUNNER


def _steps(job):
    return [s.identifier for s in job.steps]


class TestSamplePipeline:
    """Tests against the shared sample pipeline."""

    def test_jobs_in_source_order(self, pipeline):
        """Hidden template jobs are not jobs."""
        assert [j.name for j in pipeline.jobs] == ["build", "plan", "deploy"]
        assert pipeline.stages == ("build", "test", "deploy")

    def test_workflow_env(self, pipeline):
        assert pipeline.env == {"PLAN_JSON": "plan.json", "TF_ROOT": "terraform"}

    def test_extends_merged(self, pipeline):
        plan = pipeline.get_job("plan")
        assert plan.image == "hashicorp/terraform:1.5"
        assert plan.get_step("before_script").raw_value == ["cd $TF_ROOT", "terraform init"]

    def test_report_becomes_own_step(self, pipeline):
        """artifacts:reports:terraform becomes artifacts.terraform."""
        plan = pipeline.get_job("plan")
        assert _steps(plan) == ["before_script", "script", "artifacts.terraform"]
        assert plan.get_step("artifacts.terraform").raw_value == "$PLAN_JSON"

    def test_metadata_not_steps(self, pipeline):
        plan = pipeline.get_job("plan")
        assert plan.env == {"PLAN_JSON": "plan.json", "TF_STATE": "default"}
        assert plan.runner == ("terraform",)
        assert plan.stage == "test"
        assert plan.needs is None

    def test_default_runner_when_untagged(self, pipeline):
        assert pipeline.get_job("build").runner_selector is DEFAULT_RUNNER

    def test_deploy_metadata(self, pipeline):
        deploy = pipeline.get_job("deploy")
        assert deploy.timeout_minutes == 90
        assert deploy.concurrency == "production"
        assert _steps(deploy) == ["script", "environment"]

    def test_positions(self, pipeline):
        assert [s.position for s in pipeline.get_job("plan").steps] == [0, 1, 2]

    def test_default_triggers(self, pipeline):
        assert pipeline.triggers == DEFAULT_TRIGGERS


class TestStepOrder:
    """Steps follow execution order regardless of key order."""

    def test_canonical_order(self):
        text = """
job:
  artifacts:
    paths: [out/]
  after_script: [echo done]
  script: [make]
  before_script: [setup]
  cache:
    paths: [.cache]
  retry: 2
"""
        job = parse_pipeline(text).get_job("job")
        assert _steps(job) == ["cache", "before_script", "script", "after_script", "artifacts", "retry"]

    def test_plain_artifacts_and_reports(self):
        text = """
test:
  script: [pytest]
  artifacts:
    when: always
    paths: [htmlcov/]
    reports:
      junit: report.xml
"""
        job = parse_pipeline(text).get_job("test")
        assert _steps(job) == ["script", "artifacts", "artifacts.junit"]
        assert job.get_step("artifacts").raw_value == {"when": "always", "paths": ["htmlcov/"]}


class TestDefaults:
    """Tests for default: and legacy global keywords."""

    def test_default_section_inherited(self):
        text = """
default:
  image: python:3.12
  before_script: [pip install -e .]
test:
  script: [pytest]
"""
        job = parse_pipeline(text).get_job("test")
        assert job.image == "python:3.12"
        assert _steps(job) == ["before_script", "script"]

    def test_legacy_globals_inherited(self):
        text = """
image: node:20
before_script: [npm ci]
test:
  script: [npm test]
"""
        job = parse_pipeline(text).get_job("test")
        assert job.image == "node:20"
        assert job.get_step("before_script").raw_value == ["npm ci"]

    def test_job_value_wins(self):
        text = """
default:
  image: python:3.12
test:
  image: python:3.11
  script: [pytest]
"""
        assert parse_pipeline(text).get_job("test").image == "python:3.11"

    def test_inherit_default_false(self):
        text = """
default:
  image: python:3.12
test:
  inherit:
    default: false
  script: [pytest]
"""
        assert parse_pipeline(text).get_job("test").image is None

    def test_inherit_default_list(self):
        text = """
default:
  image: python:3.12
  before_script: [setup]
test:
  inherit:
    default: [image]
  script: [pytest]
"""
        job = parse_pipeline(text).get_job("test")
        assert job.image == "python:3.12"
        assert _steps(job) == ["script"]


class TestExtends:
    """Tests for extends resolution."""

    def test_multiple_parents_deep_merged(self):
        text = """
.base:
  variables:
    A: "1"
    B: "1"
.extra:
  variables:
    B: "2"
test:
  extends: [.base, .extra]
  variables:
    C: "3"
  script: [make]
"""
        job = parse_pipeline(text).get_job("test")
        assert job.env == {"A": "1", "B": "2", "C": "3"}

    def test_circular_extends(self):
        text = """
.a:
  extends: .b
.b:
  extends: .a
test:
  extends: .a
  script: [make]
"""
        with pytest.raises(ParseError, match="circular extends"):
            parse_pipeline(text)

    def test_unknown_parent(self):
        with pytest.raises(ParseError, match="extends unknown job") as exc_info:
            parse_pipeline("test:\n  extends: .missing\n  script: [make]\n")
        assert exc_info.value.construct == "test"


class TestReference:
    """Tests for !reference tags."""

    def test_reference_resolved(self):
        text = """
.setup:
  script:
    - echo setup
test:
  script:
    - !reference [.setup, script]
    - make
"""
        job = parse_pipeline(text).get_job("test")
        assert job.get_step("script").raw_value == [["echo setup"], "make"]

    def test_missing_reference(self):
        text = """
test:
  script:
    - !reference [.missing, script]
"""
        with pytest.raises(ParseError, match="!reference target not found"):
            parse_pipeline(text)


class TestJobFields:
    """Tests for job metadata parsing."""

    def test_variables_value_form(self):
        text = """
test:
  variables:
    DEPLOY_ENV:
      value: staging
      description: Target
    DEBUG: true
    RETRIES: 3
  script: [make]
"""
        job = parse_pipeline(text).get_job("test")
        assert job.env == {"DEPLOY_ENV": "staging", "DEBUG": "true", "RETRIES": "3"}

    def test_needs_forms(self):
        text = """
stages: [build, test]
build:
  stage: build
  script: [make]
test:
  stage: test
  needs:
    - build
    - job: lint
    - pipeline: other
  script: [pytest]
"""
        assert parse_pipeline(text).get_job("test").needs == ("build", "lint")

    def test_image_mapping(self):
        text = "test:\n  image:\n    name: alpine:3\n    entrypoint: ['']\n  script: [ls]\n"
        assert parse_pipeline(text).get_job("test").image == "alpine:3"

    def test_allow_failure(self):
        text = "test:\n  allow_failure: true\n  script: [ls]\n"
        assert parse_pipeline(text).get_job("test").allow_failure is True

    def test_default_stage_is_test(self):
        assert parse_pipeline("lint:\n  script: [ruff]\n").get_job("lint").stage == "test"

    def test_pre_stage_allowed(self):
        text = "setup:\n  stage: .pre\n  script: [echo]\n"
        assert parse_pipeline(text).get_job("setup").stage == ".pre"


class TestWorkflow:
    """Tests for workflow: name and rules."""

    def test_name(self):
        text = "workflow:\n  name: Release\ntest:\n  script: [make]\n"
        assert parse_pipeline(text, name="ci").name == "Release"

    def test_triggers_from_rules(self):
        text = """
workflow:
  rules:
    - if: $CI_PIPELINE_SOURCE == "schedule"
    - if: '$CI_PIPELINE_SOURCE == "web"'
    - if: $CI_PIPELINE_SOURCE == "push"
      when: never
test:
  script: [make]
"""
        assert parse_pipeline(text).triggers == ("schedule", "web")


class TestParseErrors:
    """Tests for ParseError cases."""

    def test_invalid_yaml(self):
        with pytest.raises(ParseError, match="Invalid YAML"):
            parse_pipeline("test: [unclosed", location="bad.yml")

    def test_non_mapping_document(self):
        with pytest.raises(ParseError, match="mapping"):
            parse_pipeline("- a\n- b\n")

    def test_undeclared_stage(self):
        with pytest.raises(ParseError, match="not declared") as exc_info:
            parse_pipeline("stages: [build]\ntest:\n  stage: release\n  script: [make]\n", location="ci.yml")
        assert exc_info.value.construct == "test"
        assert exc_info.value.location == "ci.yml"

    def test_bad_timeout(self):
        with pytest.raises(ParseError) as exc_info:
            parse_pipeline("test:\n  timeout: soon\n  script: [make]\n")
        assert exc_info.value.construct == "test.timeout"

    def test_non_mapping_job(self):
        with pytest.raises(ParseError, match="job definition"):
            parse_pipeline("test: make\n")

    def test_hidden_anchor_lists_allowed(self):
        """Hidden keys may hold anchored non-mapping values."""
        text = """
.commands: &commands
  - make
test:
  script: *commands
"""
        assert parse_pipeline(text).get_job("test").get_step("script").raw_value == ["make"]

    def test_report_only_artifacts(self):
        """artifacts with only reports yields no plain artifacts step."""
        text = "test:\n  script: [a]\n  artifacts:\n    reports:\n      junit: a.xml\n"
        assert _steps(parse_pipeline(text).get_job("test")) == ["script", "artifacts.junit"]

    def test_report_artifacts_with_when_only(self):
        """when/expire_in alone upload nothing and emit no plain artifacts step."""
        text = "test:\n  script: [a]\n  artifacts:\n    when: always\n    reports:\n      junit: a.xml\n"
        assert _steps(parse_pipeline(text).get_job("test")) == ["script", "artifacts.junit"]

    def test_untracked_artifacts_kept(self):
        text = "test:\n  script: [a]\n  artifacts:\n    untracked: true\n"
        job = parse_pipeline(text).get_job("test")
        assert job.get_step("artifacts").raw_value == {"untracked": True}

    @pytest.mark.parametrize("key,inherited,empty", [
        ("cache", "{paths: [.cache]}", "[]"),
        ("cache", "{paths: [.cache]}", "null"),
        ("before_script", "[setup]", "[]"),
        ("after_script", "[cleanup]", "[]"),
        ("services", "[postgres]", "[]"),
        ("artifacts", "{paths: [out/]}", "{}"),
    ])
    def test_empty_value_disables_inherited_keyword(self, key, inherited, empty):
        text = f"default:\n  {key}: {inherited}\ntest:\n  {key}: {empty}\n  script: [make]\n"
        assert _steps(parse_pipeline(text).get_job("test")) == ["script"]


class TestLoadPipeline:
    """Tests for load_pipeline."""

    def test_name_from_filename(self, gitlab_ci):
        pipeline = load_pipeline(gitlab_ci)
        assert pipeline.name == "gitlab-ci"

    def test_explicit_name(self, gitlab_ci):
        assert load_pipeline(gitlab_ci, name="terraform").name == "terraform"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError, match="Cannot read"):
            load_pipeline(tmp_path / "missing.yml")
