"""Shared test fixtures -- reduces boilerplate across test modules.

Provides:
- ``set_test_config`` -- autouse fixture that patches common settings and
  resets the process-wide build singletons
- ``project_dir`` -- a small Maven-style project tree
- ``outcome`` -- factory for ``BuildOutcome`` values
- ``test_client`` -- pre-built TestClient against the app
"""

import pytest
from fastapi.testclient import TestClient

from app.api.rate_limit import generate_limiter
from app.main import app
from app.services import build_service
from buildkit.contracts import BuildOutcome


# ---------------------------------------------------------------------------
# Canonical test values
# ---------------------------------------------------------------------------

API_HOST = "http://plugin-api.test"
TOKEN = "test-token"

MAIN_JAVA = (
    "package com.example.demo;\n"
    "\n"
    "import org.bukkit.plugin.java.JavaPlugin;\n"
    "\n"
    "public class Main extends JavaPlugin {\n"
    "    @Override\n"
    "    public void onEnable() {\n"
    "        getLogger().info(\"enabled\");\n"
    "    }\n"
    "}\n"
)

POM_XML = "<project><artifactId>demo</artifactId></project>\n"

PLUGIN_YML = "name: Demo\nmain: com.example.demo.Main\nversion: 1.0\n"

SAMPLE_FILES: dict[str, str] = {
    "pom.xml": POM_XML,
    "src/main/java/com/example/demo/Main.java": MAIN_JAVA,
    "src/main/resources/plugin.yml": PLUGIN_YML,
}

COMPILE_ERROR = (
    "[INFO] Compiling 1 source file to /work/target/classes\n"
    "[ERROR] COMPILATION ERROR : \n"
    "[ERROR] /work/src/main/java/com/example/demo/Main.java:[8,9] cannot find symbol\n"
    "[INFO] BUILD FAILURE\n"
)


# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch, tmp_path):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic, non-production configuration with its own plugin
    directory, a fresh tracker and an empty rate limiter.
    """
    monkeypatch.setattr("app.config.settings.API_HOST", API_HOST)
    monkeypatch.setattr("app.config.settings.PLUGINS_BASE_DIR", str(tmp_path / "generated-plugins"))
    monkeypatch.setattr("app.config.settings.RUN_TIMEOUT_SECONDS", 0.0)
    monkeypatch.setattr("app.config.settings.TRACKER_CAPACITY", 10)
    monkeypatch.setattr("app.config.settings.LOG_FILE", "")
    build_service.reset()
    generate_limiter.reset()
    yield
    build_service.reset()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_outcome(success: bool = False, **fields) -> BuildOutcome:
    """``BuildOutcome`` with sensible defaults for a failed Maven build."""
    if success:
        fields.setdefault("exit_code", 0)
        fields.setdefault("stdout", "[INFO] BUILD SUCCESS")
    else:
        fields.setdefault("exit_code", 1)
        fields.setdefault("stdout", COMPILE_ERROR)
        fields.setdefault("failure_reason", "exit_code")
    return BuildOutcome(success=success, **fields)


@pytest.fixture
def outcome():
    """Factory fixture -- ``outcome(success=..., **fields)``."""
    return make_outcome


@pytest.fixture
def project_dir(tmp_path):
    """A materialized sample project under ``tmp_path/project``."""
    root = tmp_path / "project"
    for rel, content in SAMPLE_FILES.items():
        target = root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)
