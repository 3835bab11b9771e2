"""
Process-wide configuration.

`APP_ENV=test` swaps in `TestSettings`, which needs no database, Sentry or webhook and keeps the coordination
sections real so tests can tune windows and limits with `monkeypatch.setattr`.
"""

import os
from typing import TYPE_CHECKING, cast

from pydantic_settings import BaseSettings

from app.environment import EnvironmentName


def get_settings() -> BaseSettings:
    if os.getenv("APP_ENV") == EnvironmentName.TESTING.value:
        from .test_settings import TestSettings

        return TestSettings()

    from .settings import Settings

    return Settings()


if TYPE_CHECKING:
    from .settings import Settings

    settings = cast(Settings, get_settings())
else:
    settings = get_settings()
