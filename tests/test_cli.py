"""Tests for the command line entry point."""

import json

from storebridge.cli import EXIT_CONFIG, EXIT_ERRORS, EXIT_OK, main


class TestCLI:
    def test_plan_json(self, capsys):
        assert main(["plan", "--json"]) == EXIT_OK

        plan = json.loads(capsys.readouterr().out)
        assert plan["stages"][-1] == ["certificates", "reviews", "translation_memory"]

    def test_dry_run_from_export(self, capsys, export_dir, tmp_path):
        code = main([
            "run",
            "--export-dir", str(export_dir),
            "--dry-run",
            "--output-dir", str(tmp_path / "out"),
            "--manifest", str(tmp_path / "manifest.json"),
        ])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert "Status: completed" in out
        assert "translation_memory" in out
        assert not (tmp_path / "manifest.json").exists()

    def test_run_with_config_file(self, capsys, config, tmp_path):
        config_path = tmp_path / "config.json"
        config_path.write_text(json.dumps(config.to_dict()))

        code = main(["run", "--config", str(config_path)])

        assert code == EXIT_OK
        assert (tmp_path / "manifest.json").exists()

    def test_missing_export_dir_is_configuration_error(self, capsys, tmp_path):
        code = main(["run", "--source-type", "json_export", "--output-dir", str(tmp_path)])

        assert code == EXIT_CONFIG
        assert "export_dir" in capsys.readouterr().err

    def test_manifest_summary(self, capsys, tmp_path):
        path = tmp_path / "legacy.json"
        path.write_text(json.dumps({"userIdMap": [["u1", "a"], ["u2", "b"]]}))

        assert main(["manifest", str(path)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "legacy mappings file" in out
        assert "Total: 2" in out

    def test_manifest_missing_file(self, tmp_path):
        assert main(["manifest", str(tmp_path / "none.json")]) == EXIT_CONFIG

    def test_preview(self, capsys, tmp_path):
        path = tmp_path / "input.json"
        path.write_text(json.dumps([
            {"id": "u1", "email": "a@b.c", "role": "MODERATOR"},
            {"id": "u2", "name": "no email"},
        ]))

        assert main(["preview", "--entity", "users", "--input", str(path)]) == EXIT_ERRORS
        out = capsys.readouterr().out
        assert '"role": "moderator"' in out
        assert "Record u2 would be skipped" in out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_CONFIG
