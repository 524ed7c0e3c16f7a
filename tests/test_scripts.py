import json
import sys
from pathlib import Path

from backend.core.schema import FileEntry

sys.path.append(str(Path(__file__).resolve().parents[1] / "scripts"))

import make_sample_file_entry


def test_make_sample_file_entry(tmp_path, monkeypatch, capsys):
    output = tmp_path / "entry.json"
    monkeypatch.setattr(
        sys,
        "argv",
        ["make_sample_file_entry.py", "--output", str(output), "--sites", "2", "--file-no", "GWD/7/2025"],
    )

    make_sample_file_entry.main()

    entry = FileEntry.model_validate(json.loads(output.read_text(encoding="utf-8")))
    assert entry.file_no == "GWD/7/2025"
    assert [site.name_of_site for site in entry.site_details] == ["Borewell-1", "Borewell-2"]
    assert "Sample file entry written" in capsys.readouterr().out
