import logging

import oracledb

logger = logging.getLogger(__name__)


class OracleConnectionManager:
    """Owns the async Oracle pool behind the oracle session identity store.

    FreePDB: host:port/service DSN, no TLS.
    ADB: DSN descriptor; with ``oracle_wallet_path`` set the pool is opened
    over mTLS using the wallet directory.
    """

    def __init__(self, settings):
        self.settings = settings
        self.pool: oracledb.AsyncConnectionPool | None = None

    def _pool_params(self) -> dict:
        params = {
            "user": self.settings.oracle_user,
            "password": self.settings.oracle_password,
            "dsn": self.settings.get_dsn(),
            "min": self.settings.oracle_pool_min,
            "max": self.settings.oracle_pool_max,
        }
        if self.settings.uses_wallet:
            params["config_dir"] = self.settings.oracle_wallet_path
            params["ssl_server_dn_match"] = True
            if self.settings.oracle_wallet_password:
                params["wallet_password"] = self.settings.oracle_wallet_password
        return params

    async def create_pool(self) -> oracledb.AsyncConnectionPool:
        params = self._pool_params()
        if self.settings.uses_wallet:
            logger.info("ADB identity store over mTLS (wallet at %s)", self.settings.oracle_wallet_path)
        else:
            logger.info("Oracle identity store: %s", params["dsn"])
        self.pool = await oracledb.create_pool_async(**params)
        return self.pool

    async def close_pool(self):
        if self.pool:
            await self.pool.close()
            self.pool = None
