"""
Integration tests for the crdwise CLI.

Tests cover:
- Version output
- plan, lint and diff commands
- install and upgrade against an in-memory cluster
- uninstall with and without CRD deletion
- owners and history commands
- JSON error output
"""

import json
from pathlib import Path
from typing import Any, Callable

import pytest
from typer.testing import CliRunner

from crdwise import __version__
from crdwise.cli import app
from crdwise.cluster import InMemoryCluster
from crdwise.policy import POLICY_ANNOTATION


runner = CliRunner()

RESOURCES = """\
apiVersion: v1
kind: Namespace
metadata:
  name: demo
---
apiVersion: example.com/v1
kind: Widget
metadata:
  name: sample
  namespace: demo
spec:
  size: {{ values.size }}
"""

COLOR_ONLY = {"type": "object", "properties": {"color": {"type": "string"}}}


@pytest.fixture
def widgets_dir(pack_dir: Callable[..., Path], widget_crd: dict[str, Any]) -> Path:
    return pack_dir({
        "pack.yaml": {"name": "widgets", "version": "1.0.0"},
        "values.yaml": {"size": "small"},
        "crds/widgets.yaml": widget_crd,
        "templates/resources.yaml": RESOURCES,
    })


@pytest.fixture
def breaking_dir(pack_dir: Callable[..., Path], make_crd: Callable[..., dict]) -> Path:
    """The widgets pack after dropping the required `size` field."""
    return pack_dir({
        "pack.yaml": {"name": "widgets", "version": "2.0.0"},
        "crds/widgets.yaml": make_crd(spec_schema=COLOR_ONLY),
    }, name="breaking")


@pytest.fixture
def engine_config(tmp_path: Path) -> Path:
    path = tmp_path / "engine.yaml"
    path.write_text("poll_interval_seconds: 0.01\nwait_timeout_seconds: 5\n")
    return path


@pytest.fixture
def fake_cluster(monkeypatch: pytest.MonkeyPatch, cluster: InMemoryCluster) -> InMemoryCluster:
    """Route every CLI cluster connection to an in-memory cluster."""
    monkeypatch.setattr("crdwise.cli.KubeHttpClient", lambda url, token=None, verify=True: cluster)
    monkeypatch.setenv("KUBE_API_URL", "https://kube.test")
    return cluster


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state.db"


def _json(result: Any) -> dict[str, Any]:
    return json.loads(result.stdout)


def _install(pack: Path, config: Path, state: Path, *extra: str) -> Any:
    return runner.invoke(app, [
        "install", str(pack), "--release", "demo", "--config", str(config), "--state", str(state), "--json", *extra,
    ])


class TestVersion:
    """Tests for --version."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "crdwise" in result.stdout
        assert __version__ in result.stdout


class TestPlanCommand:
    """Tests for `crdwise plan`."""

    def test_plan_json(self, widgets_dir: Path) -> None:
        result = runner.invoke(app, ["plan", str(widgets_dir), "--release", "demo", "--json"])
        assert result.exit_code == 0
        data = _json(result)
        assert [s["action"] for s in data["steps"]] == ["apply_crd", "wait_crd", "apply_resource", "apply_resource"]
        assert data["steps"][3]["target"] == "Widget/demo/sample"

    def test_plan_with_force(self, widgets_dir: Path) -> None:
        result = runner.invoke(app, ["plan", str(widgets_dir), "--force-crd-update", "--json"])
        assert result.exit_code == 0
        assert _json(result)["steps"][0]["strategy"] == "force"

    def test_uninstall_plan(self, widgets_dir: Path) -> None:
        result = runner.invoke(app, ["plan", str(widgets_dir), "--uninstall", "--json"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["operation"] == "uninstall"
        assert [s["action"] for s in data["steps"]] == ["delete_crd"]

    def test_plan_console(self, widgets_dir: Path) -> None:
        result = runner.invoke(app, ["plan", str(widgets_dir), "--release", "demo"])
        assert result.exit_code == 0
        assert "release demo" in result.stdout

    def test_missing_pack_yaml(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"values.yaml": {}})
        result = runner.invoke(app, ["plan", str(path), "--json"])
        assert result.exit_code == 1
        data = _json(result)
        assert data["error"] is True
        assert data["error_type"] == "PackMissingFileError"

    def test_missing_pack_yaml_console(self, pack_dir: Callable[..., Path]) -> None:
        path = pack_dir({"values.yaml": {}})
        result = runner.invoke(app, ["plan", str(path)])
        assert result.exit_code == 1
        assert "Error:" in result.stdout

    def test_invalid_config(self, widgets_dir: Path, tmp_path: Path) -> None:
        config = tmp_path / "bad.yaml"
        config.write_text("poll_interval_seconds: -1\n")
        result = runner.invoke(app, ["plan", str(widgets_dir), "--config", str(config)])
        assert result.exit_code == 2


class TestLintCommand:
    """Tests for `crdwise lint`."""

    def test_info_only_passes(self, widgets_dir: Path) -> None:
        result = runner.invoke(app, ["lint", str(widgets_dir), "--json"])
        assert result.exit_code == 0
        assert [i["code"] for i in _json(result)["issues"]] == ["no-policy-annotation"]

    def test_warning_fails_with_strict(self, pack_dir: Callable[..., Path], make_crd: Callable[..., dict]) -> None:
        path = pack_dir({
            "pack.yaml": {"name": "widgets", "version": "1.0.0"},
            "templates/widgets.yaml": make_crd(annotations={POLICY_ANNOTATION: "shared"}),
        })
        assert runner.invoke(app, ["lint", str(path)]).exit_code == 0
        assert runner.invoke(app, ["lint", str(path), "--strict"]).exit_code == 1


class TestDiffCommand:
    """Tests for `crdwise diff`."""

    def test_requires_api_server(self, widgets_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("KUBE_API_URL", raising=False)
        result = runner.invoke(app, ["diff", str(widgets_dir)])
        assert result.exit_code == 2

    def test_new_crd(self, widgets_dir: Path, fake_cluster: InMemoryCluster) -> None:
        result = runner.invoke(app, ["diff", str(widgets_dir), "--json"])
        assert result.exit_code == 0
        crd = _json(result)["crds"][0]
        assert crd["crd_name"] == "widgets.example.com"
        assert crd["exists"] is False
        assert crd["changes"] == []

    def test_breaking_change(
        self,
        breaking_dir: Path,
        fake_cluster: InMemoryCluster,
        widget_crd: dict[str, Any],
    ) -> None:
        fake_cluster.add(widget_crd)
        result = runner.invoke(app, ["diff", str(breaking_dir), "--json"])
        assert result.exit_code == 0
        crd = _json(result)["crds"][0]
        assert crd["exists"] is True
        assert crd["max_severity"] == "dangerous"
        assert [c["kind"] for c in crd["changes"]] == ["remove_required_field"]
        assert crd["decision"]["action"] == "abort"

    def test_breaking_change_with_force(
        self,
        breaking_dir: Path,
        fake_cluster: InMemoryCluster,
        widget_crd: dict[str, Any],
    ) -> None:
        fake_cluster.add(widget_crd)
        result = runner.invoke(app, ["diff", str(breaking_dir), "--force-crd-update", "--json"])
        assert _json(result)["crds"][0]["decision"]["action"] == "proceed"

    def test_breaking_change_with_configured_strategy(
        self,
        breaking_dir: Path,
        fake_cluster: InMemoryCluster,
        widget_crd: dict[str, Any],
        tmp_path: Path,
    ) -> None:
        config = tmp_path / "force.yaml"
        config.write_text("strategy: force\n")
        fake_cluster.add(widget_crd)
        result = runner.invoke(app, ["diff", str(breaking_dir), "--config", str(config), "--json"])
        assert result.exit_code == 0
        assert _json(result)["crds"][0]["decision"]["action"] == "proceed"

    def test_console_output(self, widgets_dir: Path, fake_cluster: InMemoryCluster) -> None:
        result = runner.invoke(app, ["diff", str(widgets_dir)])
        assert result.exit_code == 0
        assert "new CRD" in result.stdout


class TestInstallCommand:
    """Tests for `crdwise install` and `crdwise upgrade`."""

    def test_install(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        result = _install(widgets_dir, engine_config, state_path)
        assert result.exit_code == 0
        data = _json(result)
        assert data["status"] == "completed"
        assert data["statistics"]["completed_steps"] == 4
        widgets = fake_cluster.objects("Widget")
        assert [w["spec"] for w in widgets] == [{"size": "small"}]

    def test_install_records_owner_and_history(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        _install(widgets_dir, engine_config, state_path)

        owners = runner.invoke(app, ["owners", "--state", str(state_path), "--json"])
        assert owners.exit_code == 0
        records = _json(owners)["owners"]
        assert [(r["crd_name"], r["release"], r["policy"]) for r in records] == [
            ("widgets.example.com", "demo", "managed"),
        ]

        history = runner.invoke(app, ["history", "--state", str(state_path), "--json"])
        assert history.exit_code == 0
        operations = _json(history)["operations"]
        assert len(operations) == 1
        assert operations[0]["operation"] == "install"
        assert operations[0]["status"] == "completed"

    def test_upgrade_aborts_on_breaking_change(
        self,
        widgets_dir: Path,
        breaking_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        _install(widgets_dir, engine_config, state_path)
        result = runner.invoke(app, [
            "upgrade", str(breaking_dir), "--release", "demo",
            "--config", str(engine_config), "--state", str(state_path), "--json",
        ])
        assert result.exit_code == 1
        data = _json(result)
        assert data["status"] == "failed"
        assert data["error"]["error_type"] == "BreakingChangeError"

    def test_upgrade_with_force(
        self,
        widgets_dir: Path,
        breaking_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        _install(widgets_dir, engine_config, state_path)
        result = runner.invoke(app, [
            "upgrade", str(breaking_dir), "--release", "demo", "--force-crd-update",
            "--config", str(engine_config), "--state", str(state_path),
        ])
        assert result.exit_code == 0
        assert "COMPLETED" in result.stdout

    def test_ownership_conflict(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        _install(widgets_dir, engine_config, state_path)
        result = runner.invoke(app, [
            "install", str(widgets_dir), "--release", "other",
            "--config", str(engine_config), "--state", str(state_path), "--json",
        ])
        assert result.exit_code == 1
        data = _json(result)
        assert data["error_type"] == "OwnershipConflictError"
        assert data["context"]["owner"] == "demo"

    def test_same_release_name_in_another_namespace(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        assert _install(widgets_dir, engine_config, state_path, "--namespace", "team-a").exit_code == 0
        result = _install(widgets_dir, engine_config, state_path, "--namespace", "team-b")
        assert result.exit_code == 1
        data = _json(result)
        assert data["error_type"] == "OwnershipConflictError"
        assert data["context"]["owner"] == "team-a/demo"

        owners = _json(runner.invoke(app, ["owners", "--state", str(state_path), "--json"]))["owners"]
        assert [(r["release"], r["release_namespace"]) for r in owners] == [("demo", "team-a")]


class TestUninstallCommand:
    """Tests for `crdwise uninstall`."""

    @pytest.fixture
    def installed(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> InMemoryCluster:
        assert _install(widgets_dir, engine_config, state_path).exit_code == 0
        return fake_cluster

    def _uninstall(self, pack: Path, config: Path, state: Path, *extra: str) -> Any:
        return runner.invoke(app, [
            "uninstall", str(pack), "--release", "demo",
            "--config", str(config), "--state", str(state), "--json", *extra,
        ])

    def test_keeps_crds_by_default(
        self,
        installed: InMemoryCluster,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
    ) -> None:
        result = self._uninstall(widgets_dir, engine_config, state_path)
        assert result.exit_code == 0
        data = _json(result)
        assert data["crds_deleted"] == []
        assert data["crds_released"] == ["widgets.example.com"]
        assert len(installed.objects("CustomResourceDefinition")) == 1

        owners = runner.invoke(app, ["owners", "--state", str(state_path), "--json"])
        assert _json(owners)["owners"] == []

    def test_delete_blocked_by_instances(
        self,
        installed: InMemoryCluster,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
    ) -> None:
        result = self._uninstall(widgets_dir, engine_config, state_path, "--delete-crds")
        assert result.exit_code == 1
        data = _json(result)
        assert data["error"]["error_type"] == "DeletionBlockedError"
        assert data["steps"][0]["impact"]["count"] == 1
        assert len(installed.objects("CustomResourceDefinition")) == 1

    def test_delete_confirmed(
        self,
        installed: InMemoryCluster,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
    ) -> None:
        result = self._uninstall(
            widgets_dir, engine_config, state_path,
            "--delete-crds", "--confirm-crd-deletion", "widgets.example.com",
        )
        assert result.exit_code == 0
        assert _json(result)["status"] == "completed"
        assert installed.objects("CustomResourceDefinition") == []


class TestStateCommands:
    """Tests for owners and history without a state database."""

    def test_owners_without_state(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["owners", "--state", str(tmp_path / "missing.db")])
        assert result.exit_code == 0
        assert "No state database" in result.stdout

    def test_history_without_state(self, tmp_path: Path) -> None:
        result = runner.invoke(app, ["history", "--state", str(tmp_path / "missing.db")])
        assert result.exit_code == 0
        assert "No state database" in result.stdout

    def test_history_console(
        self,
        widgets_dir: Path,
        engine_config: Path,
        state_path: Path,
        fake_cluster: InMemoryCluster,
    ) -> None:
        _install(widgets_dir, engine_config, state_path)
        result = runner.invoke(app, ["history", "--state", str(state_path)])
        assert result.exit_code == 0
        assert "install" in result.stdout
