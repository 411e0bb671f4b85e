from __future__ import annotations

from pathlib import Path

from adrlens.config import (
    AdrLensConfig,
    adrlens_defaults,
    env_overrides,
    merge_payload,
    resolve_config,
)


def _write_config(root: Path, body: str) -> Path:
    path = root / "adrlens.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_defaults_without_any_source(tmp_path: Path) -> None:
    config = resolve_config(tmp_path, environ={})
    assert config == AdrLensConfig()
    assert config.executable == "adrscan"
    assert config.adr_directory == "docs/adr"
    assert config.document_suffixes == (".adr.md", ".md")
    assert config.confidence_threshold == 0.7
    assert config.managed_debounce_ms == 1000
    assert config.workspace_debounce_ms == 5000


def test_toml_section_is_read(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        "[adrlens]\n"
        'executable = "./bin/adrscan"\n'
        'adr-directory = "decisions"\n'
        "ml_enabled = false\n"
        "confidence_threshold = 3\n"
        'document_suffixes = [".adr.md"]\n'
        "\n"
        "[other]\n"
        "ignored = true\n",
    )

    config = resolve_config(tmp_path, environ={})

    assert config.executable == "./bin/adrscan"
    assert config.adr_directory == "decisions"
    assert config.ml_enabled is False
    assert config.confidence_threshold == 1.0
    assert config.document_suffixes == (".adr.md",)


def test_invalid_toml_counts_as_empty(tmp_path: Path) -> None:
    _write_config(tmp_path, "[adrlens\nexecutable = ")
    assert adrlens_defaults(tmp_path) == {}
    assert resolve_config(tmp_path, environ={}) == AdrLensConfig()


def test_editor_settings_accept_camel_case_and_aliases(tmp_path: Path) -> None:
    _write_config(tmp_path, '[adrlens]\nexecutable = "from-toml"\n')
    settings = {
        "adrlens": {
            "cliPath": "/usr/local/bin/adrscan",
            "adrDirectory": "docs/decisions",
            "enableMLFeatures": False,
            "confidenceThreshold": 0.5,
            "autoDetectDrift": False,
            "showInlineWarnings": False,
            "maxDiagnosticsPerFile": 5,
            "unknownSetting": 1,
        }
    }

    config = resolve_config(tmp_path, settings=settings, environ={})

    assert config.executable == "/usr/local/bin/adrscan"
    assert config.adr_directory == "docs/decisions"
    assert config.ml_enabled is False
    assert config.confidence_threshold == 0.5
    assert config.auto_rescan is False
    assert config.inline_diagnostics is False
    assert config.max_diagnostics_per_file == 5


def test_nested_setting_groups_collapse(tmp_path: Path) -> None:
    settings = {"adrlens": {"ui": {"showStatusBar": False}, "adr": {"template": "nygard"}}}
    config = resolve_config(tmp_path, settings=settings, environ={})
    assert config.status_indicator is False
    assert config.template_format == "nygard"


def test_environment_wins_over_everything(tmp_path: Path) -> None:
    _write_config(tmp_path, '[adrlens]\nexecutable = "from-toml"\n')
    config = resolve_config(
        tmp_path,
        settings={"executable": "from-settings"},
        environ={"ADRLENS_EXECUTABLE": "/env/adrscan", "ADRLENS_ADR_DIRECTORY": " "},
    )
    assert config.executable == "/env/adrscan"
    assert config.adr_directory == "docs/adr"


def test_ill_typed_values_fall_back_to_defaults() -> None:
    config = AdrLensConfig.from_table(
        {
            "max_diagnostics_per_file": "many",
            "managed_debounce_ms": -5,
            "confidence_threshold": True,
            "executable": "   ",
            "auto_rescan": "off",
        }
    )
    assert config.max_diagnostics_per_file == 100
    assert config.managed_debounce_ms == 1000
    assert config.confidence_threshold == 0.7
    assert config.executable == "adrscan"
    assert config.auto_rescan is False


def test_env_overrides_and_merge_payload() -> None:
    assert env_overrides({"ADRLENS_EXECUTABLE": " adrscan2 "}) == {"executable": "adrscan2"}
    assert merge_payload({"a": None, "b": 2}, {"a": 1, "b": 1}) == {"a": 1, "b": 2}
    assert AdrLensConfig().as_table()["document_suffixes"] == [".adr.md", ".md"]
