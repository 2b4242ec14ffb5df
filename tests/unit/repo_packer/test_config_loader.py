from pathlib import Path

import pytest

from repo_packer.config import PatternKind
from repo_packer.config_loader import find_config_file, load_config_file, load_env_overrides, load_settings
from repo_packer.exceptions import ConfigurationError


@pytest.mark.unit
def test_yaml_config_is_discovered_in_first_input(tmp_path: Path) -> None:
    config = tmp_path / "repo-packer.yaml"
    config.write_text("max_size: 1MB\njson: true\nignore_patterns:\n  - '*.csv'\n", encoding="utf-8")

    settings = load_settings({"input_paths": [str(tmp_path)]}, env={})

    assert find_config_file(tmp_path) == config
    assert settings.max_size == "1MB"
    assert settings.json_output is True
    assert settings.ignore_patterns == ["*.csv"]
    assert settings.config == config


@pytest.mark.unit
def test_toml_config_with_priority_rules(tmp_path: Path) -> None:
    config = tmp_path / "repo-packer.toml"
    config.write_text(
        'tokens = "50K"\n\n[[priority_rules]]\npattern = "^src/"\nscore = 10\nkind = "regex"\n',
        encoding="utf-8",
    )

    settings = load_settings({"config": str(config)}, env={})

    assert settings.budget == 50_000
    assert settings.priority_rules[0].score == 10
    assert settings.priority_rules[0].kind == PatternKind.REGEX


@pytest.mark.unit
def test_json_config_file(tmp_path: Path) -> None:
    config = tmp_path / "repo-packer.json"
    config.write_text('{"line-numbers": true, "threads": 2}', encoding="utf-8")

    assert load_config_file(config) == {"line_numbers": True, "threads": 2}


@pytest.mark.unit
def test_layering_file_then_env_then_cli(tmp_path: Path) -> None:
    (tmp_path / "repo-packer.yml").write_text("max_size: 1MB\nthreads: 2\n", encoding="utf-8")
    inputs = {"input_paths": [str(tmp_path)]}

    assert load_settings(inputs, env={}).max_size == "1MB"
    assert load_settings(inputs, env={"REPO_PACKER_MAX_SIZE": "2MB"}).max_size == "2MB"
    settings = load_settings({**inputs, "max_size": "3MB"}, env={"REPO_PACKER_MAX_SIZE": "2MB"})
    assert settings.max_size == "3MB"
    assert settings.threads == 2


@pytest.mark.unit
def test_env_overrides_parse_lists_booleans_and_rules() -> None:
    env = {
        "REPO_PACKER_IGNORE_PATTERNS": "*.lock, dist/",
        "REPO_PACKER_TREE_HEADER": "true",
        "REPO_PACKER_PRIORITY_RULES": '[{"pattern": "src/**", "score": 5}]',
        "REPO_PACKER_NOT_A_SETTING": "x",
        "UNRELATED": "y",
    }

    values = load_env_overrides(env)

    assert values == {
        "ignore_patterns": ["*.lock", "dist/"],
        "tree_header": "true",
        "priority_rules": [{"pattern": "src/**", "score": 5}],
    }
    settings = load_settings({}, env=env)
    assert settings.tree_header is True
    assert settings.priority_rules[0].pattern == "src/**"


@pytest.mark.unit
def test_invalid_env_rules_are_configuration_errors() -> None:
    with pytest.raises(ConfigurationError):
        load_env_overrides({"REPO_PACKER_PRIORITY_RULES": "[not json"})


@pytest.mark.unit
def test_unreadable_or_invalid_config_files(tmp_path: Path) -> None:
    broken = tmp_path / "repo-packer.yaml"
    broken.write_text("max_size: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_file(broken)

    not_a_mapping = tmp_path / "list.json"
    not_a_mapping.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_file(not_a_mapping)

    with pytest.raises(ConfigurationError):
        load_settings({"config": str(tmp_path / "missing.yaml")}, env={})


@pytest.mark.unit
def test_validation_errors_are_wrapped(tmp_path: Path) -> None:
    (tmp_path / "repo-packer.yaml").write_text("unknown_option: 1\n", encoding="utf-8")

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({"input_paths": [str(tmp_path)]}, env={})
    assert excinfo.value.field == "unknown_option"

    with pytest.raises(ConfigurationError) as excinfo:
        load_settings({"threads": 0}, env={})
    assert excinfo.value.field == "threads"
