import json

import pytest
from typer.testing import CliRunner

from inventory_cli import app, load_books

runner = CliRunner()


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "books.txt")


def invoke(data_file, *args):
    return runner.invoke(app, ["--data-file", data_file, *args])


def test_list_missing_file_is_empty(data_file):
    result = invoke(data_file, "list")
    assert result.exit_code == 0
    assert json.loads(result.stdout) == []


def test_add_keeps_sorted_order(data_file):
    invoke(data_file, "add", "12", "Emma", "Jane_Austen", "Classic", "1")
    result = invoke(data_file, "add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "2")
    assert result.exit_code == 0
    books = json.loads(result.stdout)
    assert [b["id"] for b in books] == [7, 12]
    assert books[0] == {
        "id": 7,
        "title": "Dune",
        "author": "Frank_Herbert",
        "category": "Sci-Fi",
        "available": 2,
        "total": 2,
    }


def test_add_duplicate_fails(data_file):
    invoke(data_file, "add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "2")
    result = invoke(data_file, "add", "7", "Other", "Someone", "Misc", "1")
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert load_books(data_file)[0]["title"] == "Dune"


def test_add_rejects_zero_copies(data_file):
    result = invoke(data_file, "add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "0")
    assert result.exit_code == 1
    assert load_books(data_file) == []


def test_issue_and_return(data_file):
    invoke(data_file, "add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "1")
    result = invoke(data_file, "issue", "7")
    assert json.loads(result.stdout)[0]["available"] == 0

    result = invoke(data_file, "issue", "7")
    assert result.exit_code == 1
    assert load_books(data_file)[0]["available"] == 0

    result = invoke(data_file, "return", "7")
    assert json.loads(result.stdout)[0]["available"] == 1
    result = invoke(data_file, "return", "7")
    assert result.exit_code == 0
    assert json.loads(result.stdout)[0]["available"] == 1


def test_unknown_book(data_file):
    assert invoke(data_file, "issue", "99").exit_code == 1
    assert invoke(data_file, "return", "99").exit_code == 1


def test_delete_unknown_is_noop(data_file):
    invoke(data_file, "add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "1")
    result = invoke(data_file, "delete", "99")
    assert result.exit_code == 0
    assert [b["id"] for b in json.loads(result.stdout)] == [7]
    result = invoke(data_file, "delete", "7")
    assert json.loads(result.stdout) == []


def test_usage_error_is_nonzero(data_file):
    assert invoke(data_file, "add", "7", "Dune").exit_code != 0
    assert invoke(data_file, "explode").exit_code != 0


def test_load_skips_bad_lines(data_file):
    with open(data_file, "w", encoding="utf-8") as f:
        f.write("7,Dune,Frank_Herbert,Sci-Fi,1,2\n\nbroken line\nx,Bad,Row,Misc,1,1\n12,Emma,Jane_Austen,Classic,0,1\n")
    assert [b["id"] for b in load_books(data_file)] == [7, 12]


def test_data_file_from_environment(data_file, monkeypatch):
    monkeypatch.setenv("INVENTORY_DATA_FILE", data_file)
    runner.invoke(app, ["add", "7", "Dune", "Frank_Herbert", "Sci-Fi", "1"])
    assert load_books(data_file)[0]["id"] == 7
