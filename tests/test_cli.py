"""Integration tests for CLI commands."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from cpg_explorer import __version__
from cpg_explorer.cli import app


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch):
    """Keep the user's config file and environment out of CLI runs."""
    monkeypatch.setattr("cpg_explorer.config.CONFIG_FILE", tmp_path / "absent.toml")
    for name in ("CPG_DB_PATH", "HOST", "PORT", "CPG_REQUEST_TIMEOUT", "CPG_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"CPG Explorer v{__version__}" in result.stdout

    def test_missing_database(self, tmp_path: Path):
        result = runner.invoke(app, ["stats", "--db", str(tmp_path / "missing.db")])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_database_from_environment(self, cpg_db_path: Path, monkeypatch):
        monkeypatch.setenv("CPG_DB_PATH", str(cpg_db_path))
        result = runner.invoke(app, ["stats"])
        assert result.exit_code == 0
        assert "totalNodes" in result.stdout


class TestOverviewCommands:
    """Tests for 'stats' and 'packages'."""

    def test_stats(self, cpg_db_path: Path):
        result = runner.invoke(app, ["stats", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "totalNodes" in result.stdout
        assert "11" in result.stdout

    def test_stats_reports_missing_tables(self, minimal_db_path: Path):
        result = runner.invoke(app, ["stats", "--db", str(minimal_db_path)])
        assert result.exit_code == 0
        assert "Optional tables unavailable" in result.stdout
        assert "hotspots" in result.stdout

    def test_packages(self, cpg_db_path: Path):
        result = runner.invoke(app, ["packages", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "core" in result.stdout
        assert "util" in result.stdout


class TestQueryCommands:
    """Tests for search, callgraph, hotspots, findings and source."""

    def test_search(self, cpg_db_path: Path):
        result = runner.invoke(app, ["search", "Foo", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "FooBar" in result.stdout
        assert "FooPkg" not in result.stdout

    def test_search_no_matches(self, cpg_db_path: Path):
        result = runner.invoke(app, ["search", "zzz", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "No matches." in result.stdout

    def test_code_search(self, minimal_db_path: Path):
        result = runner.invoke(app, ["code-search", "Sprintf", "--db", str(minimal_db_path)])
        assert result.exit_code == 0
        assert "Helper" in result.stdout

    def test_callgraph(self, cpg_db_path: Path):
        result = runner.invoke(app, ["callgraph", "core.Main", "--depth", "1", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "Nodes: 3" in result.stdout
        assert "Main → Run" in result.stdout

    def test_callgraph_unknown_function(self, cpg_db_path: Path):
        result = runner.invoke(app, ["callgraph", "nope", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "not found" in result.stdout

    def test_callgraph_bad_direction(self, cpg_db_path: Path):
        result = runner.invoke(
            app, ["callgraph", "core.Main", "--direction", "sideways", "--db", str(cpg_db_path)]
        )
        assert result.exit_code == 1
        assert "Error:" in result.stdout

    def test_hotspots(self, cpg_db_path: Path):
        result = runner.invoke(app, ["hotspots", "--limit", "3", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "Main" in result.stdout
        assert "Helper" not in result.stdout

    def test_hotspots_unavailable(self, minimal_db_path: Path):
        result = runner.invoke(app, ["hotspots", "--db", str(minimal_db_path)])
        assert result.exit_code == 0
        assert "No hotspots available." in result.stdout

    def test_findings(self, cpg_db_path: Path):
        result = runner.invoke(app, ["findings", "core.Main", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "[security]" in result.stdout
        assert result.stdout.index("CRITICAL") < result.stdout.index("INFO")

    def test_source_for_function(self, cpg_db_path: Path):
        result = runner.invoke(app, ["source", "api.Handle", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "func Handle()" in result.stdout

    def test_source_for_file(self, cpg_db_path: Path):
        result = runner.invoke(app, ["source", "--file", "util/helper.go", "--db", str(cpg_db_path)])
        assert result.exit_code == 0
        assert "Sprintf" in result.stdout

    def test_source_requires_target(self, cpg_db_path: Path):
        result = runner.invoke(app, ["source", "--db", str(cpg_db_path)])
        assert result.exit_code != 0


class TestMarkupInStoredData:
    """Brackets in names, packages and paths are printed literally."""

    @pytest.fixture
    def bracket_db_path(self, cpg_db_factory) -> Path:
        nodes = [
            ("web.Page", "function", "Page", "pages/[id].tsx", 1, "web[ui]", None),
            ("web.Weird", "function", "Weird[/x]", "pages/[id].tsx", 3, "web[ui]", None),
        ]
        edges = [("web.Page", "web.Weird", "call")]
        return cpg_db_factory("brackets.db", nodes=nodes, edges=edges)

    def test_search(self, bracket_db_path: Path):
        result = runner.invoke(app, ["search", "Weird", "--db", str(bracket_db_path)])
        assert result.exit_code == 0
        assert "Weird[/x]" in result.stdout
        assert "pages/[id].tsx:3" in result.stdout

    def test_packages(self, bracket_db_path: Path):
        result = runner.invoke(app, ["packages", "--db", str(bracket_db_path)])
        assert result.exit_code == 0
        assert "web[ui]" in result.stdout

    def test_callgraph(self, bracket_db_path: Path):
        result = runner.invoke(app, ["callgraph", "web.Page", "--db", str(bracket_db_path)])
        assert result.exit_code == 0
        assert "Page → Weird[/x]" in result.stdout

    def test_unknown_function_id(self, bracket_db_path: Path):
        result = runner.invoke(app, ["callgraph", "[/bold]", "--db", str(bracket_db_path)])
        assert result.exit_code == 0
        assert "Function '[/bold]' not found." in result.stdout
