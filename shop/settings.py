import logging
import os
import typing

import attr

from graph_orm import Config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: typing.Union[int, str] = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


@attr.s(auto_attribs=True, frozen=True)
class Settings:
    database_url: str = "memory://"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: typing.Optional[typing.Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            database_url=environ.get("SHOP_DATABASE_URL", defaults.database_url),
            log_level=environ.get("SHOP_LOG_LEVEL", defaults.log_level),
        )

    def orm_config(self, environ: typing.Optional[typing.Mapping[str, str]] = None) -> Config:
        # GRAPH_ORM_* still tunes the session behaviour, the shop only picks the database
        return Config.from_env(environ, database_url=self.database_url)
