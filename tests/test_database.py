"""Tests for engine and session helpers."""

from unittest.mock import patch

import pytest

from electoral_atlas.database import get_engine, session_scope


class TestGetEngine:
    """Tests for get_engine."""

    def test_engine_follows_settings(self, test_settings):
        test_settings.database_echo = True

        engine = get_engine(test_settings)

        assert engine.echo is True
        assert engine.url.database == "electoral_atlas_test"
        engine.dispose()


class TestSessionScope:
    """Tests for session_scope."""

    @pytest.fixture
    def mocks(self):
        with patch("electoral_atlas.database.get_engine") as engine, patch(
            "electoral_atlas.database.get_session"
        ) as session:
            yield engine, session

    def test_closes_after_success(self, test_settings, mocks):
        engine, session = mocks

        with session_scope(test_settings) as scoped:
            scoped.add("unit")

        engine.assert_called_once_with(test_settings)
        session.assert_called_once_with(engine.return_value)
        session.return_value.add.assert_called_once_with("unit")
        session.return_value.rollback.assert_not_called()
        session.return_value.close.assert_called_once()
        engine.return_value.dispose.assert_called_once()

    def test_rolls_back_and_reraises(self, test_settings, mocks):
        engine, session = mocks

        with pytest.raises(ValueError, match="bad row"):
            with session_scope(test_settings):
                raise ValueError("bad row")

        session.return_value.rollback.assert_called_once()
        session.return_value.close.assert_called_once()
        engine.return_value.dispose.assert_called_once()
