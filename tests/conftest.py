import pytest

from company_cache import CompanyCache
from fakes import FakeCache, FakeSummarizer


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("PROFILER_DATA_DIR", str(tmp_path / "data"))
    return tmp_path / "data"


@pytest.fixture
def company_cache(tmp_path):
    return CompanyCache(str(tmp_path / "company_cache.db"))


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()
