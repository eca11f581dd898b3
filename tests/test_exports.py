"""Tests for package exports."""

import logging


def test_engine_exports_available() -> None:
    """Test that the query engine is importable from the package root."""
    from querylab import (
        MutationCoordinator,
        NetworkLog,
        NetworkSimulator,
        QueryCache,
        Scheduler,
        Subscription,
    )

    # Just verify they're importable
    assert QueryCache is not None
    assert MutationCoordinator is not None
    assert NetworkSimulator is not None
    assert NetworkLog is not None
    assert Scheduler is not None
    assert Subscription is not None


def test_playground_exports_available() -> None:
    from querylab import (
        DataSource,
        HttpDataSource,
        MemoryDataSource,
        PlaygroundConfig,
        create_playground,
    )

    assert create_playground is not None
    assert PlaygroundConfig is not None
    assert DataSource is not None
    assert MemoryDataSource is not None
    assert HttpDataSource is not None


def test_all_names_resolve() -> None:
    import querylab

    for name in querylab.__all__:
        assert hasattr(querylab, name), name


def test_library_installs_null_handler() -> None:
    handlers = logging.getLogger("querylab").handlers
    assert any(isinstance(h, logging.NullHandler) for h in handlers)
