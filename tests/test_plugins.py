"""
Tests for cfslib/plugins.py post-sync plugins.

Plugins are run for real with `sh` and the current interpreter; every test
works inside its own tmp_path output root.
"""
import json
import os
import sys

import pytest
import yaml
from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cfslib.errors import CliPluginError
from cfslib.plugins import PluginStep, find_declaration, parse_step, start_plugins


@pytest.fixture
def output_dir(tmp_path, monkeypatch):
    monkeypatch.delenv("CFS_DISABLE_PLUGINS", raising=False)
    root = tmp_path / ".cfs"
    (root / "plugins").mkdir(parents=True)
    return root


def declare(output_dir, declaration, name="plugins.json"):
    path = output_dir / "plugins" / name
    if name.endswith(".json"):
        path.write_text(json.dumps(declaration))
    else:
        path.write_text(yaml.safe_dump(declaration))
    return path


class TestDeclaration:
    """Tests for finding and parsing the declaration."""

    def test_no_declaration(self, output_dir):
        assert find_declaration(str(output_dir)) is None
        assert start_plugins(str(output_dir)) == 0

    def test_json_preferred_over_yaml(self, output_dir):
        declare(output_dir, {"plugins": []}, "plugins.yaml")
        json_path = declare(output_dir, {"plugins": []}, "plugins.json")

        assert find_declaration(str(output_dir)) == str(json_path)

    def test_yml_found(self, output_dir):
        path = declare(output_dir, {"plugins": []}, "plugins.yml")
        assert find_declaration(str(output_dir)) == str(path)

    def test_parse_inline_step(self):
        assert parse_step("echo hi") == PluginStep(run="echo hi")

    def test_parse_object_step(self):
        step = parse_step({"run": "check.py", "description": "Check", "disabled": True})
        assert step.run == "check.py"
        assert step.disabled is True

    def test_invalid_step_type(self):
        with pytest.raises(CliPluginError, match="Invalid plugin file format"):
            parse_step(42)

    def test_object_without_run(self):
        with pytest.raises(ValidationError):
            parse_step({"description": "missing run"})

    def test_empty_run(self):
        with pytest.raises(ValidationError):
            parse_step("")


class TestRunPlugins:
    """Tests for plugin execution."""

    def test_inline_step(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        declare(output_dir, {"plugins": [f"echo ran > {marker}"]})

        assert start_plugins(str(output_dir)) == 1

        assert marker.read_text().strip() == "ran"
        run_dir = output_dir / "plugins" / ".run"
        assert (run_dir / ".gitignore").read_text() == "*\n"
        assert (run_dir / "plugin-0.sh").exists()

    def test_shell_script_step(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        (output_dir / "plugins" / "audit.sh").write_text(f"echo audited > {marker}\n")
        declare(output_dir, {"plugins": [{"run": "audit.sh", "description": "Audit"}]}, "plugins.yaml")

        assert start_plugins(str(output_dir)) == 1
        assert marker.read_text().strip() == "audited"

    def test_python_step_sees_output_dir(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        (output_dir / "plugins" / "hello.py").write_text(
            "import os\n"
            f"open({str(marker)!r}, 'w').write(os.environ['CFS_OUTPUT'])\n"
        )
        declare(output_dir, {"plugins": ["hello.py"]})

        start_plugins(str(output_dir))

        assert marker.read_text() == str(output_dir)

    def test_steps_run_in_order(self, output_dir, tmp_path):
        log = tmp_path / "log"
        declare(output_dir, {"plugins": [f"echo one >> {log}", f"echo two >> {log}"]})

        start_plugins(str(output_dir))

        assert log.read_text().split() == ["one", "two"]

    def test_failure_aborts_remaining(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        declare(output_dir, {"plugins": ["exit 3", f"echo ran > {marker}"]})

        with pytest.raises(CliPluginError, match="The plugin failed."):
            start_plugins(str(output_dir))
        assert not marker.exists()

    def test_disabled_step_skipped(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        declare(output_dir, {"plugins": [{"run": f"echo ran > {marker}", "disabled": True}]})

        assert start_plugins(str(output_dir)) == 0
        assert not marker.exists()

    def test_top_level_disabled(self, output_dir, tmp_path):
        marker = tmp_path / "marker"
        declare(output_dir, {"disabled": True, "plugins": [f"echo ran > {marker}"]})

        assert start_plugins(str(output_dir)) == 0
        assert not marker.exists()

    def test_non_list_plugins_ignored(self, output_dir):
        declare(output_dir, {"plugins": "echo nope"})
        assert start_plugins(str(output_dir)) == 0

    @pytest.mark.parametrize("value", ["1", "true"])
    def test_disabled_by_env(self, output_dir, tmp_path, monkeypatch, value):
        marker = tmp_path / "marker"
        declare(output_dir, {"plugins": [f"echo ran > {marker}"]})
        monkeypatch.setenv("CFS_DISABLE_PLUGINS", value)

        assert start_plugins(str(output_dir)) == 0
        assert not marker.exists()

    def test_run_dir_recreated(self, output_dir):
        stale = output_dir / "plugins" / ".run" / "plugin-9.sh"
        stale.parent.mkdir()
        stale.write_text("old")
        declare(output_dir, {"plugins": ["true"]})

        start_plugins(str(output_dir))

        assert not stale.exists()
