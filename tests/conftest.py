"""Pytest fixtures shared across all test modules."""

import pytest

from scriptbook import Notebook, Settings

from tests.stubs import StubSession


@pytest.fixture
def stub_factory():
    """Session factory for KernelProvider that records every stub it makes."""
    created = []

    def factory(cwd, settings):
        session = StubSession(cwd=cwd, settings=settings)
        created.append(session)
        return session

    factory.created = created
    return factory


@pytest.fixture
def notebook(tmp_path):
    """A three-cell document under a temporary folder."""
    nb = Notebook(path=tmp_path / "demo.pynb")
    nb.add_cell(source="x = 1")
    nb.add_cell(source="x + 1")
    nb.add_cell(source="print(x)")
    return nb


@pytest.fixture
def fast_settings():
    """Settings tuned for quick process tests."""
    return Settings(poll_interval=0.05, shutdown_timeout=2.0)
