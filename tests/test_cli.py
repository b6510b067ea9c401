"""Tests for the depgov command line."""

import json

from typer.testing import CliRunner

from depgov import __version__
from depgov.cli import app
from depgov.config import DEFAULT_TENANT
from depgov.db.session import make_session_factory
from depgov.policy.service import template_policy_id
from depgov.store.factory import sql_stores

runner = CliRunner()

RISKY = """\
dependencies:
  - name: minimist
    version: 1.2.5
    ecosystem: npm
    licenses: [MIT]
    vulnerabilities:
      - id: GHSA-xvch-5gv4-984h
        cve: CVE-2021-44906
        severity: CRITICAL
        exploitability: PUBLIC_EXPLOIT
  - name: chalk
    version: 5.3.0
    ecosystem: npm
    licenses: [MIT]
"""

CLEAN = """\
dependencies:
  - name: chalk
    version: 5.3.0
    ecosystem: npm
    licenses: [MIT]
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestCli:
    """Tests for the CLI commands."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_templates(self):
        result = runner.invoke(app, ["templates"])
        assert result.exit_code == 0
        assert "security-standard" in result.stdout
        assert "maintenance-policy" in result.stdout

    def test_assess_json(self, tmp_path):
        result = runner.invoke(app, ["assess", _write(tmp_path, "inv.yaml", RISKY), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert len(data["assessments"]) == 2
        first = data["priorities"][0]
        assert first["dependency"]["name"] == "minimist"
        assert first["risk_score"] == 93

    def test_assess_table(self, tmp_path):
        result = runner.invoke(app, ["assess", _write(tmp_path, "inv.yaml", RISKY)])
        assert result.exit_code == 0
        assert "minimist" in result.stdout

    def test_assess_bad_inventory(self, tmp_path):
        result = runner.invoke(app, ["assess", _write(tmp_path, "inv.yaml", "nothing: here\n")])
        assert result.exit_code == 2

    def test_evaluate_blocks_critical(self, tmp_path):
        path = _write(tmp_path, "inv.yaml", RISKY)
        result = runner.invoke(app, ["evaluate", path, "--template", "security-standard", "--json"])

        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["summary"]["blocked_dependencies"] == 1
        statuses = {e["dependency_id"]: e["status"] for e in data["evaluations"]}
        assert statuses == {"minimist@1.2.5": "VIOLATION", "chalk@5.3.0": "COMPLIANT"}

    def test_evaluate_compliant(self, tmp_path):
        result = runner.invoke(app, ["evaluate", _write(tmp_path, "inv.yaml", CLEAN)])
        assert result.exit_code == 0
        assert "COMPLIANT" in result.stdout

    def test_evaluate_with_policy_file(self, tmp_path):
        policies = _write(
            tmp_path,
            "policies.yaml",
            """\
policies:
  - name: No chalk
    rules:
      - name: Ban chalk
        conditions:
          - field: name
            operator: equals
            value: chalk
        actions:
          - type: BLOCK
""",
        )
        result = runner.invoke(app, ["evaluate", _write(tmp_path, "inv.yaml", CLEAN), "--policies", policies])
        assert result.exit_code == 1

    def test_evaluate_invalid_policy(self, tmp_path):
        policies = _write(
            tmp_path,
            "policies.yaml",
            "policies:\n  - name: Broken\n    rules:\n      - name: r\n        conditions: []\n        actions: []\n",
        )
        result = runner.invoke(app, ["evaluate", _write(tmp_path, "inv.yaml", CLEAN), "--policies", policies])

        assert result.exit_code == 2
        assert "must have at least one condition" in result.stdout

    def test_evaluate_unknown_template(self, tmp_path):
        result = runner.invoke(app, ["evaluate", _write(tmp_path, "inv.yaml", CLEAN), "--template", "nope"])
        assert result.exit_code == 2

    def test_evaluate_persist_reuses_policies(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'depgov.db'}"
        monkeypatch.setattr("depgov.cli.make_session_factory", lambda: make_session_factory(url))
        path = _write(tmp_path, "inv.yaml", RISKY)

        args = ["evaluate", path, "--template", "security-standard", "--persist", "--json"]
        stores = sql_stores(make_session_factory(url))

        assert runner.invoke(app, args).exit_code == 1
        first_violations = {v.id for v in stores.violations.list_by_tenant(DEFAULT_TENANT)}
        assert runner.invoke(app, args).exit_code == 1

        policies = stores.policies.list_by_tenant(DEFAULT_TENANT)
        assert [p.id for p in policies] == [template_policy_id(DEFAULT_TENANT, "security-standard")]
        assert first_violations
        assert {v.id for v in stores.violations.list_by_tenant(DEFAULT_TENANT)} == first_violations
        assert len(stores.evaluations.list_by_tenant(DEFAULT_TENANT)) == 2

    def test_evaluate_persist_policy_file_twice(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'depgov.db'}"
        monkeypatch.setattr("depgov.cli.make_session_factory", lambda: make_session_factory(url))
        policies = _write(
            tmp_path,
            "policies.yaml",
            """\
policies:
  - id: policy_no_chalk
    name: No chalk
    rules:
      - name: Ban chalk
        conditions:
          - field: name
            operator: equals
            value: chalk
        actions:
          - type: BLOCK
""",
        )
        args = ["evaluate", _write(tmp_path, "inv.yaml", CLEAN), "--policies", policies, "--persist"]

        assert runner.invoke(app, args).exit_code == 1
        assert runner.invoke(app, args).exit_code == 1
        stored = sql_stores(make_session_factory(url)).policies.list_by_tenant(DEFAULT_TENANT)
        assert [p.id for p in stored] == ["policy_no_chalk"]

    def test_evaluate_policy_id_of_other_tenant(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'depgov.db'}"
        monkeypatch.setattr("depgov.cli.make_session_factory", lambda: make_session_factory(url))
        policies = _write(
            tmp_path,
            "policies.yaml",
            "policies:\n  - id: shared\n    name: Shared\n    rules:\n      - name: r\n"
            "        conditions:\n          - field: name\n            operator: equals\n            value: x\n"
            "        actions:\n          - type: WARN\n",
        )
        inventory = _write(tmp_path, "inv.yaml", CLEAN)

        assert runner.invoke(app, ["evaluate", inventory, "--policies", policies, "--persist"]).exit_code == 0
        result = runner.invoke(
            app, ["evaluate", inventory, "--policies", policies, "--persist", "--tenant", "other"]
        )
        assert result.exit_code == 2
        assert "already exists for another tenant" in result.stdout
