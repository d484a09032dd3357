"""Optional sqlalchemy contrib import tests."""

import pytest


def test_sqlalchemy_contrib_importable_when_dependency_available() -> None:
    pytest.importorskip("sqlalchemy")

    from erp_client.contrib.sqlalchemy import (
        credential_store,  # noqa: F401
        models,  # noqa: F401
        operation_store,  # noqa: F401
    )
