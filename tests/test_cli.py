"""Tests for the number store command line."""

from autocall.cli import main
from autocall.store import NumberStore


def _db(tmp_path):
    return str(tmp_path / "cli.db")


def _write_source(tmp_path, text):
    source = tmp_path / "contacts.txt"
    source.write_text(text, encoding="utf-8")
    return str(source)


def test_import_list_stats_reset(tmp_path, capsys):
    db = _db(tmp_path)
    source = _write_source(tmp_path, "Ana (61) 8837-7338\nBruno 11 91234-5678\nlixo 123\n")

    assert main(["--db", db, "import", source]) == 0
    assert "Added 2 valid numbers" in capsys.readouterr().out

    assert main(["--db", db, "import", source]) == 0
    assert "Added 0 valid numbers (2 valid, 2 already stored" in capsys.readouterr().out

    store = NumberStore.open(f"sqlite:///{db}")
    try:
        store.mark_called(store.list_all()[0].id)
    finally:
        store.close()

    assert main(["--db", db, "list"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("[x]") and lines[0].endswith("+5561988377338")
    assert lines[1].startswith("[ ]") and lines[1].endswith("+5511912345678")

    assert main(["--db", db, "stats"]) == 0
    assert capsys.readouterr().out.strip() == "Total: 2  Called: 1  Remaining: 1"

    assert main(["--db", db, "reset", "--yes"]) == 0
    assert "1 numbers marked as not called" in capsys.readouterr().out

    main(["--db", db, "stats"])
    assert capsys.readouterr().out.strip() == "Total: 2  Called: 0  Remaining: 2"


def test_import_without_ninth_digit(tmp_path, capsys):
    db = _db(tmp_path)
    source = _write_source(tmp_path, "(61) 8837-7338")

    assert main(["--db", db, "import", "--no-ninth-digit", source]) == 0

    # Legacy 8-digit mobiles are left as typed.
    store = NumberStore.open(f"sqlite:///{db}")
    try:
        assert "+5561988377338" not in [row.number for row in store.list_all()]
    finally:
        store.close()


def test_list_empty_store(tmp_path, capsys):
    assert main(["--db", _db(tmp_path), "list"]) == 0
    assert capsys.readouterr().out.strip() == "Number store is empty."


def test_reset_requires_confirmation(tmp_path, capsys):
    assert main(["--db", _db(tmp_path), "reset"]) == 2
    assert "--yes" in capsys.readouterr().err


def test_unopenable_store_returns_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")

    assert main(["--db", str(blocker / "cli.db"), "stats"]) == 1


def test_import_unreadable_source_returns_error(tmp_path, capsys):
    db = _db(tmp_path)
    binary = tmp_path / "contacts.bin"
    binary.write_bytes(b"\xff\xfe\x00\x81 (61) 8837-7338")

    assert main(["--db", db, "import", str(tmp_path / "missing.txt")]) == 1
    assert main(["--db", db, "import", str(binary)]) == 1
    assert "Traceback" not in capsys.readouterr().err
