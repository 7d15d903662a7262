import os
import sys
from dataclasses import replace

import pytest

# Ensure project root and this directory are importable (orc package, fakes helpers).
_here = os.path.dirname(__file__)
_project_root = os.path.dirname(_here)
for _p in (_project_root, _here):
    if _p not in sys.path:
        sys.path.insert(0, _p)

import orc.settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the event journal at a per-test sqlite file."""
    cfg = replace(orc.settings.settings, events_db=str(tmp_path / "events.db"), source_root=str(tmp_path))
    monkeypatch.setattr(orc.settings, "settings", cfg)
    return cfg
