from pathlib import Path

import pytest

from pnpfucius.exceptions import ConfigurationError
from pnpfucius.instructions import REQUIRED_TEMPLATES, InstructionLoader


def test_packaged_templates_render_placeholders():
    loader = InstructionLoader(personal_dir="/nonexistent-pnpfucius-dir")

    prompt = loader.render("market_from_topic_user_prompt.md", topic="Tornado Cash", category_line="")

    assert "Tornado Cash" in prompt
    assert "{topic}" not in prompt
    assert loader.load("system_prompt.md")


def test_packaged_templates_are_complete():
    loader = InstructionLoader(personal_dir="/nonexistent-pnpfucius-dir")

    assert loader.missing() == []
    loader.ensure_complete()


def test_personal_copy_replaces_packaged_template(tmp_path: Path):
    base = tmp_path / "base"
    personal = tmp_path / "personal"
    base.mkdir()
    personal.mkdir()
    (base / "greeting.md").write_text("Hello {name}", encoding="utf-8")
    (personal / "greeting.md").write_text("Howdy {name} {unknown}\n", encoding="utf-8")

    loader = InstructionLoader(base_dir=base, personal_dir=personal)

    assert loader.locate("greeting.md") == personal / "greeting.md"
    assert loader.render("greeting.md", name="Ada") == "Howdy Ada {unknown}"


def test_missing_template_raises(tmp_path: Path):
    loader = InstructionLoader(base_dir=tmp_path, personal_dir=tmp_path / "none")

    with pytest.raises(FileNotFoundError):
        loader.load("absent.md")


def test_incomplete_template_folder_fails_startup_check(tmp_path: Path):
    (tmp_path / "system_prompt.md").write_text("You help.", encoding="utf-8")
    loader = InstructionLoader(base_dir=tmp_path, personal_dir=tmp_path / "none")

    with pytest.raises(ConfigurationError) as excinfo:
        loader.ensure_complete()

    assert "system_prompt.md" not in loader.missing()
    assert len(loader.missing()) == len(REQUIRED_TEMPLATES) - 1
    assert "welcome_message.md" in str(excinfo.value)


def test_instructions_dir_can_come_from_environment(monkeypatch, tmp_path: Path):
    (tmp_path / "system_prompt.md").write_text("From env", encoding="utf-8")
    monkeypatch.setenv("PNPFUCIUS_INSTRUCTIONS_DIR", str(tmp_path))

    loader = InstructionLoader(personal_dir=tmp_path / "none")

    assert loader.load("system_prompt.md") == "From env"
