"""Shared pytest fixtures for opsflow tests."""

import logging
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from opsflow.workflow import WorkflowStore


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point every config and data path at the test's temporary directory."""
    monkeypatch.setenv("OPSFLOW_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("OPSFLOW_WORKFLOWS_DIR", str(tmp_path / "workflows"))
    monkeypatch.setenv("OPSFLOW_AUDIT_LOG", str(tmp_path / "audit" / "security.jsonl"))
    monkeypatch.chdir(tmp_path)
    yield
    logger = logging.getLogger("opsflow")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def workflows_dir(tmp_path):
    """Workflows directory used by the CLI (via OPSFLOW_WORKFLOWS_DIR)."""
    path = tmp_path / "workflows"
    path.mkdir()
    return path


@pytest.fixture
def store(workflows_dir):
    """Workflow store backed by the temporary workflows directory."""
    return WorkflowStore(workflows_dir)


@pytest.fixture
def write_workflow(workflows_dir):
    """Write a workflow document to <workflows_dir>/<name>.yaml."""

    def _write(name: str, data, suffix: str = ".yaml"):
        path = workflows_dir / f"{name}{suffix}"
        if isinstance(data, str):
            path.write_text(data)
        else:
            path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path

    return _write


@pytest.fixture
def sample_workflow_data():
    """Small valid workflow document with variables, capture and rollback."""
    return {
        "name": "Deploy",
        "description": "Deploy the stack",
        "variables": {"ENV": "staging", "VERSION": "1.0"},
        "steps": [
            {"name": "Announce", "run": "echo deploying ${VERSION} to ${ENV}"},
            {"name": "Who", "run": "echo operator", "capture": "OPERATOR"},
            {"name": "Finish", "run": "echo done by $OPERATOR"},
        ],
        "rollback": [
            {"name": "Undo", "run": "echo rollback"},
        ],
    }


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests that spawn step commands."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        yield mock_run


@pytest.fixture(name="_mock_shutil_which")
def mock_shutil_which():
    """Mock shutil.which so only common tools are found."""

    def which_side_effect(tool):
        available = {"echo", "sleep", "make", "git"}
        return f"/usr/bin/{tool}" if tool in available else None

    with patch("shutil.which", side_effect=which_side_effect) as mock:
        yield mock
