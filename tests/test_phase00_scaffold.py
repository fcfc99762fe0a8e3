"""Sanity checks for baseline repository scaffolding."""

from pathlib import Path

from config import DIRECTORY_LISTING, HOST, INDEX_FILE, PORT, STATIC_DIR

ROOT = Path(__file__).resolve().parent.parent



def test_core_files_exist() -> None:
    expected = [
        "server.py",
        "socket_handler.py",
        "request.py",
        "response.py",
        "thread_pool.py",
        "config.py",
        "utils.py",
        "handlers/static_handler.py",
        "static/index.html",
    ]
    for rel_path in expected:
        assert (ROOT / rel_path).exists()



def test_basic_config_values() -> None:
    assert HOST == ""
    assert PORT == 8080
    assert STATIC_DIR == "static"
    assert INDEX_FILE == "index.html"
    assert DIRECTORY_LISTING is True
