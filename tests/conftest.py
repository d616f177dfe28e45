import pytest

from pipeport.registry import ConstructRegistry


SAMPLE_GITLAB_CI = """\
stages:
  - build
  - test
  - deploy

variables:
  PLAN_JSON: plan.json
  TF_ROOT: terraform

.terraform:
  image: hashicorp/terraform:1.5
  before_script:
    - cd $TF_ROOT
    - terraform init

build:
  stage: build
  script:
    - make build
  artifacts:
    paths:
      - dist/
    expire_in: 1 week

plan:
  extends: .terraform
  stage: test
  variables:
    PLAN_JSON: plan.json
    TF_STATE: default
  tags:
    - terraform
  script:
    - terraform plan -out=$PLAN
    - terraform show --json $PLAN > $PLAN_JSON
  artifacts:
    reports:
      terraform: $PLAN_JSON

deploy:
  stage: deploy
  timeout: 1h 30m
  resource_group: production
  script:
    - ./deploy.sh
  environment: production
"""


TERRAFORM_TRANSFORMER = """\
@transform("artifacts.terraform")
def upload_plan(item):
    return {"uses": "actions/upload-artifact@v3", "with": {"path": item}}
"""


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.config/pipeport."""
    monkeypatch.setenv("PIPEPORT_HOME", str(tmp_path / "pipeport_home"))


@pytest.fixture
def registry():
    return ConstructRegistry.create_default()


@pytest.fixture
def gitlab_ci(tmp_path):
    """Write the sample pipeline to <tmp>/.gitlab-ci.yml."""
    path = tmp_path / ".gitlab-ci.yml"
    path.write_text(SAMPLE_GITLAB_CI)
    return path


@pytest.fixture
def terraform_transformer(tmp_path):
    path = tmp_path / "transformers.py"
    path.write_text(TERRAFORM_TRANSFORMER)
    return path


@pytest.fixture
def sample_text():
    return SAMPLE_GITLAB_CI


@pytest.fixture
def terraform_source():
    return TERRAFORM_TRANSFORMER


@pytest.fixture
def pipeline():
    """The sample pipeline, parsed."""
    from pipeport.parser import parse_pipeline

    return parse_pipeline(SAMPLE_GITLAB_CI, name="ci")
