"""Unit tests for the certus-vuln command-line interface."""

import json
import logging

import pytest
import structlog

from certus_vuln.cli import EXIT_BLOCKED, EXIT_ERROR, EXIT_OK, main


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    """Keep CLI logging quiet and restore the root logger afterwards."""
    monkeypatch.setenv("CERTUS_VULN_LOG_LEVEL", "ERROR")
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def write_json(tmp_path):
    """Write an object to a JSON file under tmp_path and return its path."""

    def _write(name, data):
        path = tmp_path / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def payload_path(write_json, make_trivy_payload, trivy_vulnerability):
    return write_json(
        "trivy.json",
        make_trivy_payload([trivy_vulnerability], CreatedAt="2024-06-01T12:00:00Z"),
    )


def last_stderr_json(capsys):
    lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
    return json.loads(lines[-1])


class TestNormalizeCommand:
    """Tests for ``certus-vuln normalize``."""

    def test_prints_canonical_json(self, payload_path, capsys):
        """Test the canonical result is printed to stdout."""
        exit_code = main(["normalize", payload_path])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == EXIT_OK
        assert output["scanner"]["name"] == "trivy"
        assert output["summary"]["total"] == 1
        assert output["vulnerabilities"][0]["id"] == "CVE-2024-0001-lodash-4.17.15"

    def test_scanner_version_override(self, payload_path, capsys):
        """Test --scanner-version reaches the normalizer."""
        main(["normalize", payload_path, "--format", "TRIVY_JSON", "--scanner-version", "0.99.0"])

        assert json.loads(capsys.readouterr().out)["scanner"]["version"] == "0.99.0"

    def test_malformed_payload(self, write_json, capsys):
        """Test a structurally broken payload exits 2 with a JSON error."""
        path = write_json("broken.json", {"SchemaVersion": 2})

        exit_code = main(["normalize", path, "--format", "TRIVY_JSON"])

        assert exit_code == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "missing_results"

    def test_invalid_json(self, tmp_path, capsys):
        """Test unparseable payload files are reported as invalid_json."""
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        assert main(["normalize", str(path)]) == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "invalid_json"

    def test_unknown_format(self, write_json, capsys):
        """Test undetectable payloads exit 2."""
        path = write_json("unknown.json", {"foo": "bar"})

        assert main(["normalize", path]) == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "unknown_format"


class TestDetectVersionCommand:
    """Tests for ``certus-vuln detect-version``."""

    def test_prints_version(self, write_json, sarif_payload, capsys):
        """Test the detected version is printed."""
        path = write_json("scan.sarif", sarif_payload)

        assert main(["detect-version", path]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "2.1.0"


class TestEvaluateCommand:
    """Tests for ``certus-vuln evaluate``."""

    @pytest.fixture
    def blocking_policy(self):
        return {
            "id": "p1",
            "name": "No criticals",
            "isActive": True,
            "rules": [
                {
                    "id": "r1",
                    "ruleType": "SEVERITY_THRESHOLD",
                    "conditions": {"severity": ["CRITICAL"]},
                    "action": "BLOCK",
                    "priority": 10,
                }
            ],
        }

    def test_blocked_exit_code(self, payload_path, write_json, blocking_policy, capsys):
        """Test a blocking violation exits 1 and prints the evaluation."""
        policies = write_json("policies.json", [blocking_policy])

        exit_code = main(["evaluate", payload_path, "--policies", policies])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == EXIT_BLOCKED
        assert output["allowed"] is False
        assert output["blocked_by"]["rule_id"] == "r1"

    def test_exception_allows(self, payload_path, write_json, blocking_policy, capsys):
        """Test an approved exception in the policies file lifts the block."""
        policies = write_json(
            "policies.json",
            {
                "policies": [blocking_policy],
                "exceptions": [{"id": "ex", "targetValue": "CVE-2024-0001", "status": "APPROVED"}],
            },
        )

        exit_code = main(["evaluate", payload_path, "--policies", policies])

        assert exit_code == EXIT_OK
        assert json.loads(capsys.readouterr().out)["allowed"] is True

    def test_missing_policies_file(self, payload_path, tmp_path, capsys):
        """Test a missing policies file exits 2."""
        assert main(["evaluate", payload_path, "--policies", str(tmp_path / "nope.json")]) == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "unreadable_file"

    def test_invalid_policy_record(self, payload_path, write_json, capsys):
        """Test policy records missing required fields exit 2."""
        policies = write_json("policies.json", [{"name": "no id"}])

        assert main(["evaluate", payload_path, "--policies", policies]) == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "invalid_policies"


class TestConditionalCommand:
    """Tests for ``certus-vuln conditional``."""

    def test_new_critical_blocks_in_production(self, payload_path, write_json, capsys):
        """Test a new CRITICAL blocks in production."""
        history = write_json("history.json", [])

        exit_code = main(["conditional", payload_path, "--history", history, "--environment", "PRODUCTION"])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == EXIT_BLOCKED
        assert output["blocked_count"] == 1

    def test_existing_critical_warns(self, payload_path, write_json, capsys):
        """Test history makes the CRITICAL existing, so production only warns."""
        history = write_json(
            "history.json",
            [
                {
                    "scan_id": "scan-1",
                    "scanned_at": "2024-05-02T12:00:00Z",
                    "vulnerabilities": [
                        {
                            "id": "CVE-2024-0001-lodash-4.17.15",
                            "cve_id": "CVE-2024-0001",
                            "title": "CVE-2024-0001",
                            "severity": "CRITICAL",
                            "package_info": {"name": "lodash", "installed_version": "4.17.15", "ecosystem": "npm"},
                        }
                    ],
                }
            ],
        )

        exit_code = main(["conditional", payload_path, "--history", history, "--environment", "PRODUCTION"])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == EXIT_OK
        assert output["existing_vulnerabilities"][0]["days_since_first_seen"] == 30
        assert output["warned_count"] == 1

    def test_history_must_be_list(self, payload_path, write_json, capsys):
        """Test a non-list history file exits 2."""
        history = write_json("history.json", {"scans": []})

        assert main(["conditional", payload_path, "--history", history]) == EXIT_ERROR
        assert last_stderr_json(capsys)["error"] == "invalid_history"
