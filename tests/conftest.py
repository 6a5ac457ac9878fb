import pytest

from csv2json_config import ENVVAR_DEFAULT_FORMAT, ENVVAR_INITIAL_VECTOR_CAPACITY


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENVVAR_DEFAULT_FORMAT, raising=False)
    monkeypatch.delenv(ENVVAR_INITIAL_VECTOR_CAPACITY, raising=False)


@pytest.fixture
def write_csv(tmp_path):
    def _write(text, name="input.csv"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
