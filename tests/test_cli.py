"""
Tests for the cfs command line.

Covers:
- Command dispatch and exit codes
- list / find / clean over a prepared tree
- sync orchestration (gitignore, errors.log, plugins, summary)
- An end-to-end sync against moto
"""
import json
import logging
import os
import sys
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import aws_sync
import cfs


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    """Keep CFS_* variables, default config files and log handlers out of the tests."""
    for name in list(os.environ):
        if name.startswith("CFS_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)

    root = logging.getLogger()
    saved = list(root.handlers), root.level
    yield
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / ".cfs"


@pytest.fixture
def tree(output_dir):
    files = {
        "instances/us-east-1/r-0abc": '{"Instances": [{"InstanceType": "m5.large"}]}',
        "buckets/reports": '{"Name": "reports"}',
        ".gitignore": "*\n",
        "errors.log": "{}",
    }
    for path, content in files.items():
        full = output_dir / path
        full.parent.mkdir(parents=True, exist_ok=True)
        full.write_text(content)
    return output_dir


@pytest.fixture
def fake_sync(monkeypatch):
    """Replace the AWS sync with a stub; set .error to make it report a failure."""
    state = MagicMock(error=None, calls=[])

    def sync_account(session, output, errors, region=None, max_workers=None, tracker=None):
        state.calls.append({"output": output, "region": region, "max_workers": max_workers})
        if state.error is not None:
            errors.add_error(state.error, "vpcs/us-east-1")
        return {"regions": 1, "vpcs": 2}

    monkeypatch.setattr(cfs, "get_session", lambda profile=None: MagicMock())
    monkeypatch.setattr(cfs, "sync_account", sync_account)
    return state


def declare_plugin(output_dir, step):
    plugins = output_dir / "plugins"
    plugins.mkdir(parents=True, exist_ok=True)
    (plugins / "plugins.json").write_text(json.dumps({"plugins": [step]}))


# =============================================================================
# Dispatch Tests
# =============================================================================

class TestDispatch:
    """Tests for command dispatch and exit codes."""

    def test_help(self, capsys):
        assert cfs.main(["help"]) == 0
        out = capsys.readouterr().out
        assert "commands" in out
        assert "find" in out

    def test_invalid_command(self, capsys):
        assert cfs.main(["bogus"]) == 1
        assert 'The provided command is invalid: "bogus"' in capsys.readouterr().err

    def test_generate_config(self, capsys):
        assert cfs.main(["--generate-config"]) == 0
        assert "output:" in capsys.readouterr().out

    def test_missing_config_file(self, capsys):
        assert cfs.main(["--config", "nope.yaml", "ls"]) == 1
        assert "Config file not found" in capsys.readouterr().err


# =============================================================================
# Tree Command Tests
# =============================================================================

class TestTreeCommands:
    """Tests for list, find and clean."""

    def test_list(self, tree, capsys):
        assert cfs.main(["ls", "--output", str(tree)]) == 0

        lines = capsys.readouterr().out.split()
        assert lines == [
            os.path.join(str(tree), "buckets/reports"),
            os.path.join(str(tree), "instances/us-east-1/r-0abc"),
        ]

    def test_list_alias(self, tree, capsys):
        assert cfs.main(["list", "-o", str(tree)]) == 0
        assert "buckets/reports" in capsys.readouterr().out

    def test_find(self, tree, capsys):
        assert cfs.main(["find", "M5.LARGE", "-o", str(tree)]) == 0

        assert capsys.readouterr().out.split() == [os.path.join(str(tree), "instances/us-east-1/r-0abc")]

    def test_find_without_text(self, tree, capsys):
        assert cfs.main(["find", "-o", str(tree)]) == 1
        assert "Please provide the text to search for" in capsys.readouterr().err

    def test_find_empty_tree(self, output_dir, capsys):
        assert cfs.main(["find", "m5.large", "-o", str(output_dir)]) == 1
        assert "There are no resources" in capsys.readouterr().err

    def test_clean(self, tree):
        assert cfs.main(["clean", "-o", str(tree)]) == 0
        assert not tree.exists()

    def test_clean_missing_directory(self, output_dir):
        assert cfs.main(["clean", "-o", str(output_dir)]) == 0

    def test_default_output_dir(self, tree, capsys):
        # tree lives in ./.cfs of the working directory
        assert cfs.main(["ls"]) == 0
        assert ".cfs/buckets/reports" in capsys.readouterr().out

    def test_output_from_environment(self, tree, monkeypatch, capsys):
        monkeypatch.setenv("CFS_OUTPUT", str(tree))
        assert cfs.main(["ls"]) == 0
        assert os.path.join(str(tree), "buckets/reports") in capsys.readouterr().out


# =============================================================================
# Sync Tests
# =============================================================================

class TestSync:
    """Tests for the sync command orchestration."""

    def test_success(self, fake_sync, output_dir, capsys):
        (output_dir).mkdir()
        (output_dir / "errors.log").write_text("{}")

        assert cfs.main(["-o", str(output_dir), "--region", "eu-west-1", "--max-workers", "4"]) == 0

        assert fake_sync.calls == [{"output": str(output_dir), "region": "eu-west-1", "max_workers": 4}]
        assert (output_dir / ".gitignore").read_text() == "*\n"
        assert not (output_dir / "errors.log").exists()
        out = capsys.readouterr().out
        assert "Success" in out
        assert "vpcs" in out

    def test_explicit_sync_command(self, fake_sync, output_dir):
        assert cfs.main(["sync", "-o", str(output_dir)]) == 0
        assert len(fake_sync.calls) == 1

    def test_errors_are_reported(self, fake_sync, output_dir, capsys):
        fake_sync.error = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}, "ResponseMetadata": {"HTTPStatusCode": 403}},
            "DescribeVpcs",
        )

        assert cfs.main(["-o", str(output_dir)]) == 1

        report = json.loads((output_dir / "errors.log").read_text())
        assert report["count"] == 1
        assert report["errors"][0]["type"] == "InsufficientPermissions"
        err = capsys.readouterr().err
        assert "not allowed to list some resources" in err
        assert "errors.log" in err

    def test_plugins_run_after_clean_sync(self, fake_sync, output_dir, tmp_path):
        marker = tmp_path / "marker"
        declare_plugin(output_dir, f"echo ran > {marker}")

        assert cfs.main(["-o", str(output_dir)]) == 0
        assert marker.exists()

    def test_plugins_skipped_after_errors(self, fake_sync, output_dir, tmp_path):
        fake_sync.error = RuntimeError("boom")
        marker = tmp_path / "marker"
        declare_plugin(output_dir, f"echo ran > {marker}")

        assert cfs.main(["-o", str(output_dir)]) == 1
        assert not marker.exists()

    def test_plugin_failure(self, fake_sync, output_dir, capsys):
        declare_plugin(output_dir, "exit 1")

        assert cfs.main(["-o", str(output_dir)]) == 1
        assert "The plugin failed." in capsys.readouterr().err

    def test_schema_error_hint(self, fake_sync, output_dir, capsys):
        declare_plugin(output_dir, {"description": "no run"})

        assert cfs.main(["-o", str(output_dir)]) == 1

        err = capsys.readouterr().err
        assert "missing" in err
        assert "most likely a schema validation issue" in err

    @mock_aws
    def test_end_to_end_with_moto(self, aws_credentials, output_dir, monkeypatch):
        """Test a real sync of buckets and tables against moto."""
        session = boto3.Session(region_name="us-east-1")
        session.client("s3").create_bucket(Bucket="my-data")
        kinds = [k for k in aws_sync.RESOURCE_KINDS if k.label in ("buckets", "tables")]
        monkeypatch.setattr(aws_sync, "RESOURCE_KINDS", kinds)

        assert cfs.main(["-o", str(output_dir), "--region", "us-east-1"]) == 0

        assert json.loads((output_dir / "buckets" / "my-data").read_text())["Name"] == "my-data"
        assert json.loads((output_dir / "regions" / "us-east-1").read_text())["RegionName"] == "us-east-1"
        assert (output_dir / "tables").is_dir()
        assert not (output_dir / "errors.log").exists()
