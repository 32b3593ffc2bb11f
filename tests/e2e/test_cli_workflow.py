"""
End-to-end CLI workflow tests.

Runs engine-selector commands against engine directories written to
tmp_path. Hardware probing is replaced by a fixed snapshot.
"""

import io
import json
from unittest.mock import patch

import pytest
import yaml
from rich.console import Console

from engine_selector.cli import CliContext, main
from engine_selector.config.manager import ConfigManager
from engine_selector.schemas.hardware import load_snapshot
from engine_selector.services.hardware.cache import SnapshotCache

HOST_SNAPSHOT = """
cpus:
  - architecture: amd64
    manufacturer-id: GenuineIntel
    flags: [fpu, avx, avx2]
memory: {total-ram: 17179869184, total-swap: 0}
disk:
  /var/lib/snapd: {total: 500000000000, avail: 100000000000}
pci: []
"""

ENGINES = {
    "cpu-avx1": """
name: cpu-avx1
description: Baseline CPU engine
vendor: Test Vendor
grade: stable
memory: 300M
devices:
  allof:
    - type: cpu
      architecture: amd64
      manufacturer-id: GenuineIntel
configurations:
  server.port: 8080
""",
    "cpu-avx2": """
name: cpu-avx2
description: AVX2 CPU engine
vendor: Test Vendor
grade: stable
memory: 300M
devices:
  allof:
    - type: cpu
      architecture: amd64
      manufacturer-id: GenuineIntel
      flags: [avx2]
components:
  - llama-cpp-avx2
configurations:
  server.port: 8081
  cpu.flags: avx2
""",
    "cpu-experimental": """
name: cpu-experimental
description: Experimental CPU engine
vendor: Test Vendor
grade: devel
devices:
  allof:
    - type: cpu
      architecture: amd64
      manufacturer-id: GenuineIntel
      flags: [avx, avx2, fpu]
""",
    "nvidia-gpu": """
name: nvidia-gpu
description: CUDA engine
vendor: Test Vendor
grade: stable
devices:
  allof:
    - type: gpu
      vendor-id: 0x10de
""",
}


@pytest.fixture
def engines_dir(tmp_path):
    root = tmp_path / "engines"
    for name, content in ENGINES.items():
        (root / name).mkdir(parents=True)
        (root / name / "engine.yaml").write_text(content)
    return root


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path / "config"


@pytest.fixture
def machine():
    """Replace hardware probing with HOST_SNAPSHOT."""
    with patch.object(CliContext, "machine_snapshot", return_value=load_snapshot(HOST_SNAPSHOT)):
        yield


def run_cli(engines_dir, config_dir, *args):
    """Run the CLI and return (exit code, stdout, stderr)."""
    out = io.StringIO()
    err = io.StringIO()
    code = main(
        ["--engines-dir", str(engines_dir), "--config-dir", str(config_dir), *args],
        console=Console(file=out, width=200),
        err_console=Console(file=err, width=200),
    )
    return code, out.getvalue(), err.getvalue()


class TestListAndShow:
    """list-engines and show-engine."""

    def test_list_engines(self, engines_dir, config_dir, machine):
        code, out, _ = run_cli(engines_dir, config_dir, "list-engines")

        assert code == 0
        lines = [line for line in out.splitlines() if line.strip()]
        names = [line.split()[0] for line in lines[1:]]
        # Highest score first, incompatible last
        assert names == ["cpu-experimental", "cpu-avx2", "cpu-avx1", "nvidia-gpu"]

    def test_list_marks_active_engine(self, engines_dir, config_dir, machine):
        ConfigManager(config_dir).set_active_engine("cpu-avx1")

        _, out, _ = run_cli(engines_dir, config_dir, "list-engines")

        assert "cpu-avx1*" in out

    def test_show_engine_json(self, engines_dir, config_dir, machine):
        code, out, _ = run_cli(engines_dir, config_dir, "show-engine", "nvidia-gpu", "--format", "json")

        assert code == 0
        data = json.loads(out)
        assert data["name"] == "nvidia-gpu"
        assert data["score"] == 0
        assert data["compatible"] is False
        assert "no pci devices on host system" in data["compatibility-issues"]

    def test_show_engine_defaults_to_active(self, engines_dir, config_dir, machine):
        ConfigManager(config_dir).set_active_engine("cpu-avx2")

        _, out, _ = run_cli(engines_dir, config_dir, "show-engine")

        assert yaml.safe_load(out)["name"] == "cpu-avx2"

    def test_show_engine_without_active(self, engines_dir, config_dir, machine):
        code, _, err = run_cli(engines_dir, config_dir, "show-engine")

        assert code == 1
        assert "no active engine" in err

    def test_show_unknown_engine(self, engines_dir, config_dir, machine):
        code, _, err = run_cli(engines_dir, config_dir, "show-engine", "ghost")

        assert code == 1
        assert "engine manifest not found: ghost" in err


class TestUseEngine:
    """use-engine."""

    def test_auto_selects_best_stable_engine(self, engines_dir, config_dir, machine):
        code, out, _ = run_cli(engines_dir, config_dir, "use-engine", "--auto")

        assert code == 0
        assert "✘ nvidia-gpu: not compatible" in out
        assert "− cpu-experimental: devel" in out
        assert "Selected engine: cpu-avx2" in out
        assert "- llama-cpp-avx2" in out
        assert 'Engine changed to "cpu-avx2".' in out

        config = ConfigManager(config_dir)
        assert config.get_active_engine() == "cpu-avx2"
        assert config.get_layered() == {"server.port": 8081, "cpu.flags": "avx2"}

    def test_switch_replaces_configuration(self, engines_dir, config_dir, machine):
        run_cli(engines_dir, config_dir, "use-engine", "cpu-avx2")
        ConfigManager(config_dir).set_layer_value("server.port", 9000)

        code, _, _ = run_cli(engines_dir, config_dir, "use-engine", "cpu-avx1")

        assert code == 0
        assert ConfigManager(config_dir).get_layered() == {"server.port": 8080}

    def test_already_active(self, engines_dir, config_dir, machine):
        run_cli(engines_dir, config_dir, "use-engine", "cpu-avx1")

        code, out, _ = run_cli(engines_dir, config_dir, "use-engine", "cpu-avx1")

        assert code == 0
        assert "already active" in out

    def test_unknown_engine(self, engines_dir, config_dir, machine):
        code, _, err = run_cli(engines_dir, config_dir, "use-engine", "ghost")

        assert code == 1
        assert '"ghost" not found' in err

    def test_name_and_auto_conflict(self, engines_dir, config_dir, machine):
        code, _, err = run_cli(engines_dir, config_dir, "use-engine", "cpu-avx1", "--auto")

        assert code == 1
        assert "cannot specify both" in err

    def test_no_compatible_engine(self, tmp_path, config_dir, machine):
        engines = tmp_path / "gpu-only"
        (engines / "nvidia-gpu").mkdir(parents=True)
        (engines / "nvidia-gpu" / "engine.yaml").write_text(ENGINES["nvidia-gpu"])

        code, _, err = run_cli(engines, config_dir, "use-engine", "--auto")

        assert code == 1
        assert "No compatible engine found." in err
        assert ConfigManager(config_dir).get_active_engine() is None

    def test_invalid_manifest_fails_listing(self, engines_dir, config_dir, machine):
        (engines_dir / "cpu-avx1" / "engine.yaml").write_text(ENGINES["cpu-avx1"] + "homepage: x\n")

        code, _, err = run_cli(engines_dir, config_dir, "use-engine", "--auto")

        assert code == 1
        assert "unknown field: homepage" in err


class TestValidateEngines:
    """validate-engines."""

    def test_valid_and_invalid(self, engines_dir, config_dir, tmp_path):
        bad = tmp_path / "bad" / "engine.yaml"
        bad.parent.mkdir()
        bad.write_text("name: other\ndescription: d\nvendor: v\ngrade: stable\n")
        good = engines_dir / "cpu-avx2" / "engine.yaml"

        code, out, _ = run_cli(engines_dir, config_dir, "validate-engines", str(good), str(bad))

        assert code == 1
        assert f"✅ {good}" in out
        assert f"❌ {bad}: engine directory name should match name in manifest: bad != other" in out

    def test_all_valid(self, engines_dir, config_dir):
        paths = [str(engines_dir / name / "engine.yaml") for name in ENGINES]

        code, _, _ = run_cli(engines_dir, config_dir, "validate-engines", *paths)

        assert code == 0


class TestSelectEngine:
    """select-engine reading a snapshot from stdin."""

    def test_selects_from_piped_snapshot(self, engines_dir, config_dir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(HOST_SNAPSHOT))

        code, out, err = run_cli(engines_dir, config_dir, "select-engine")

        assert code == 0
        result = yaml.safe_load(out)
        assert result["top-engine"] == "cpu-avx2"
        assert [e["name"] for e in result["engines"]] == sorted(ENGINES)
        assert "✔ cpu-avx2: compatible, score=18" in err

    def test_engines_option(self, engines_dir, config_dir, tmp_path, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO(HOST_SNAPSHOT))

        code, out, _ = run_cli(tmp_path / "unused", config_dir, "select-engine",
                               "--engines", str(engines_dir), "--format", "json")

        assert code == 0
        assert json.loads(out)["top-engine"] == "cpu-avx2"

    def test_no_compatible_engine(self, engines_dir, config_dir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("cpus: []\nmemory: {total-ram: 1}\n"))

        code, out, err = run_cli(engines_dir, config_dir, "select-engine")

        assert code == 0
        assert yaml.safe_load(out)["top-engine"] is None
        assert "No compatible engine found." in err

    def test_missing_memory_measurement(self, engines_dir, config_dir, monkeypatch):
        """Memory requirements against a snapshot without memory abort the run."""
        monkeypatch.setattr("sys.stdin", io.StringIO("cpus: []\n"))

        code, out, err = run_cli(engines_dir, config_dir, "select-engine")

        assert code == 1
        assert "total memory not reported by host system" in err
        assert out == ""

    def test_invalid_snapshot(self, engines_dir, config_dir, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("pci: [{vendor-id: nvidia}]\n"))

        code, _, err = run_cli(engines_dir, config_dir, "select-engine")

        assert code == 1
        assert "Invalid hardware snapshot" in err


class TestShowMachine:
    """show-machine."""

    def test_prints_cached_snapshot(self, engines_dir, config_dir, tmp_path):
        cache = SnapshotCache(tmp_path / "cache", key="test", probe=lambda: load_snapshot(HOST_SNAPSHOT))

        with patch.object(CliContext, "snapshot_cache", return_value=cache):
            code, out, _ = run_cli(engines_dir, config_dir, "show-machine", "--format", "json")

        assert code == 0
        assert json.loads(out)["cpus"][0]["manufacturer-id"] == "GenuineIntel"
        assert cache.path.exists()


class TestConfigCommands:
    """get-config, set-config and unset-config."""

    @pytest.fixture(autouse=True)
    def active_engine(self, engines_dir, config_dir):
        run_cli(engines_dir, config_dir, "use-engine", "cpu-avx2")

    def test_get_single_value(self, engines_dir, config_dir):
        code, out, _ = run_cli(engines_dir, config_dir, "get-config", "server.port")

        assert code == 0
        assert out.strip() == "8081"

    def test_get_all_values(self, engines_dir, config_dir):
        _, out, _ = run_cli(engines_dir, config_dir, "get-config")

        assert yaml.safe_load(out) == {"server.port": 8081, "cpu.flags": "avx2"}

    def test_get_prefix_as_json(self, engines_dir, config_dir):
        _, out, _ = run_cli(engines_dir, config_dir, "get-config", "server", "--format", "json")

        assert json.loads(out) == {"server.port": 8081}

    def test_get_missing_key(self, engines_dir, config_dir):
        code, _, err = run_cli(engines_dir, config_dir, "get-config", "model")

        assert code == 1
        assert 'no value set for key "model"' in err

    def test_set_overrides_engine_value(self, engines_dir, config_dir):
        code, _, _ = run_cli(engines_dir, config_dir, "set-config", "server.port=9000")
        _, out, _ = run_cli(engines_dir, config_dir, "get-config", "server.port")

        assert code == 0
        assert out.strip() == "9000"

    def test_set_unknown_key(self, engines_dir, config_dir):
        code, _, err = run_cli(engines_dir, config_dir, "set-config", "model.name=qwen")

        assert code == 1
        assert "unknown key: model.name" in err

    def test_package_value_allows_user_override(self, engines_dir, config_dir):
        run_cli(engines_dir, config_dir, "set-config", "--package", "model.name=qwen")

        code, _, _ = run_cli(engines_dir, config_dir, "set-config", "model.name=llama")

        assert code == 0
        assert ConfigManager(config_dir).get_layered("model") == {"model.name": "llama"}

    @pytest.mark.parametrize("assignment, message", [
        ("server.port", 'expected key=value, got "server.port"'),
        ("=9000", "key must not start with an equal sign"),
    ])
    def test_set_malformed(self, engines_dir, config_dir, assignment, message):
        code, _, err = run_cli(engines_dir, config_dir, "set-config", assignment)

        assert code == 1
        assert message in err

    def test_unset_restores_engine_value(self, engines_dir, config_dir):
        run_cli(engines_dir, config_dir, "set-config", "server.port=9000")

        code, _, _ = run_cli(engines_dir, config_dir, "unset-config", "server.port")
        _, out, _ = run_cli(engines_dir, config_dir, "get-config", "server.port")

        assert code == 0
        assert out.strip() == "8081"


def test_no_command(engines_dir, config_dir):
    code, _, _ = run_cli(engines_dir, config_dir)
    assert code == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
