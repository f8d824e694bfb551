"""Expectation-driven runs over the sample programs in tests/programs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict

import pytest

from metalang.driver import main

PROGRAMS_DIR = Path(__file__).resolve().parent / "programs"


def load_expectation(source_path: Path) -> Dict[str, object]:
    path = source_path.with_suffix(".json")
    if not path.exists():
        raise FileNotFoundError(f"missing expectation file for {source_path.stem}: {path}")
    return json.loads(path.read_text())


@pytest.mark.parametrize(
    "source_path",
    sorted(PROGRAMS_DIR.glob("*.mt")),
    ids=lambda p: p.stem,
)
def test_program(source_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    expected = load_expectation(source_path)
    if "error" in expected:
        exit_code = main(["--json", str(source_path)])
        out = capsys.readouterr().out
        assert exit_code == 1
        payload = json.loads(out.strip().splitlines()[-1])
        assert payload["exit_code"] == 1
        assert [d["code"] for d in payload["diagnostics"]] == [expected["error"]]
        return
    exit_code = main([str(source_path)])
    captured = capsys.readouterr()
    assert captured.err == ""
    assert captured.out == expected["stdout"]
    assert exit_code == expected["exit_code"]
