"""Shared fixtures for dashvault tests."""

import pytest
from cryptography.hazmat.primitives import hashes

from dashvault import crypto
from dashvault.config import ENV_PASSWORD, DashvaultConfig

SAMPLE_INDEX = """<!DOCTYPE html>
<html>
<head><title>Contractor Stats</title></head>
<body>
<div id="lastUpdated"></div>
<script>
    let statsData = null;

    async function loadData() {
      showLoading(true);
      try {
        const response = await fetch('./data/stats.json');
        statsData = await response.json();
        updateSummaryCards();
      } catch (error) {
        console.error('Error loading data:', error);
        showNoData(true);
      } finally {
        showLoading(false);
      }
    }

    loadData();
</script>
</body>
</html>
"""

SAMPLE_GATE_OUTPUT = """<!doctype html>
<html class="staticrypt-html">
<body class="staticrypt-body">
<div class="staticrypt-form">
<p class="staticrypt-title">Protected Page</p>
<p>{instructions}</p>
</div>
<script>
    async function submitPassword(hashedPassword) {{
        if (isRememberEnabled && isRememberChecked) {{
            localStorage.setItem('staticrypt_passphrase', hashedPassword);
        }}
    }}
</script>
</body>
</html>
"""


@pytest.fixture
def fast_kdf(monkeypatch):
    """Shrink the PBKDF2 schedule so workflow tests run quickly."""
    monkeypatch.setattr(
        crypto,
        "HASH_ROUNDS",
        ((2, hashes.SHA1), (3, hashes.SHA256), (5, hashes.SHA256)),
    )


@pytest.fixture
def project(tmp_path, monkeypatch, fast_kdf):
    """A project root with a data file and a host document."""
    monkeypatch.delenv(ENV_PASSWORD, raising=False)
    monkeypatch.delenv("DASHVAULT_ROOT", raising=False)

    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "stats.json").write_text(
        '{"years": {"2024": {"jobs": 12}}, "lastUpdated": "2024-06-01"}',
        encoding="utf-8",
    )
    (tmp_path / "index.html").write_text(SAMPLE_INDEX, encoding="utf-8")
    return tmp_path


@pytest.fixture
def config(project):
    """Default configuration rooted at the test project."""
    return DashvaultConfig(root=project)


def make_gate_runner(calls=None, output=SAMPLE_GATE_OUTPUT):
    """Build a stand-in for StatiCrypt that records what it was given."""

    def runner(config, password, input_path):
        if calls is not None:
            calls.append(
                {
                    "password": password,
                    "input_path": input_path,
                    "html": input_path.read_text(encoding="utf-8"),
                }
            )
        output_dir = config.resolve(config.publish.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / input_path.name
        output_path.write_text(
            output.format(instructions=config.template.instructions),
            encoding="utf-8",
        )
        return output_path

    return runner


@pytest.fixture
def gate_runner():
    """Factory for fake StatiCrypt runners."""
    return make_gate_runner


@pytest.fixture
def sample_index():
    return SAMPLE_INDEX


@pytest.fixture
def sample_gate_output():
    return SAMPLE_GATE_OUTPUT.format(instructions="Enter your password.")
