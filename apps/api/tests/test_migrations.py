"""Migration graph shape, checked through the same script CI runs."""
import importlib.util
from pathlib import Path

SCRIPT = Path(__file__).resolve().parents[3] / ".github" / "scripts" / "ci_alembic_heads_check.py"


def _load_check():
    module_spec = importlib.util.spec_from_file_location("ci_alembic_heads_check", SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_single_head_single_root(capsys):
    check = _load_check()

    assert check.main() == 0
    assert "Migration integrity check: OK" in capsys.readouterr().out


def test_every_migration_enables_rls_for_new_tables():
    versions = Path(__file__).resolve().parents[1] / "alembic" / "versions"
    for path in versions.glob("*.py"):
        text = path.read_text()
        if "op.create_table(" in text:
            assert "ENABLE ROW LEVEL SECURITY" in text, path.name
