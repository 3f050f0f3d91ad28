import logging

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "0.1.0"

META_TABLE = "BUILDSESSION_META"
IDENTITY_TABLE = "BUILDSESSION_IDENTITY"

# (table, DDL) in creation order.
TABLES = [
    (META_TABLE, """
    CREATE TABLE BUILDSESSION_META (
        meta_key   VARCHAR2(100)  PRIMARY KEY,
        meta_value VARCHAR2(4000) NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """),
    (IDENTITY_TABLE, """
    CREATE TABLE BUILDSESSION_IDENTITY (
        store_key  VARCHAR2(400)  PRIMARY KEY,
        session_id VARCHAR2(200)  NOT NULL,
        updated_at NUMBER(20)     NOT NULL
    )
    """),
]

ALL_TABLES = [name for name, _ in TABLES]

_VERSION_MERGE = """
    MERGE INTO BUILDSESSION_META m
    USING (SELECT 'schema_version' AS meta_key FROM DUAL) s
    ON (m.meta_key = s.meta_key)
    WHEN MATCHED THEN
        UPDATE SET meta_value = :val, updated_at = CURRENT_TIMESTAMP
    WHEN NOT MATCHED THEN
        INSERT (meta_key, meta_value) VALUES ('schema_version', :val)
"""


async def init_schema(pool) -> dict:
    """Create the identity-store tables and stamp the schema version.

    Safe to re-run: tables that already exist (ORA-00955) are skipped.
    """
    tables_created = []
    errors = []

    async with pool.acquire() as conn:
        cursor = conn.cursor()
        for table, ddl in TABLES:
            try:
                await cursor.execute(ddl)
            except Exception as e:
                if "ORA-00955" in str(e):
                    logger.debug("Table %s already exists", table)
                else:
                    logger.error("Error creating table %s: %s", table, e)
                    errors.append({"table": table, "error": str(e)})
                continue
            tables_created.append(table)
            logger.info("Created table %s", table)

        if not any(err["table"] == META_TABLE for err in errors):
            await cursor.execute(_VERSION_MERGE, {"val": SCHEMA_VERSION})
        await conn.commit()

    return {"tables_created": tables_created, "errors": errors}


async def check_tables_exist(pool) -> dict[str, bool]:
    async with pool.acquire() as conn:
        cursor = conn.cursor()
        await cursor.execute(
            "SELECT table_name FROM user_tables WHERE table_name LIKE 'BUILDSESSION_%'"
        )
        existing = {row[0] for row in await cursor.fetchall()}
    return {table: table in existing for table in ALL_TABLES}


async def get_schema_version(pool) -> str:
    """Schema version stamped by ``init_schema``; "unknown" if absent or unreadable."""
    try:
        async with pool.acquire() as conn:
            cursor = conn.cursor()
            await cursor.execute(
                "SELECT meta_value FROM BUILDSESSION_META WHERE meta_key = 'schema_version'"
            )
            row = await cursor.fetchone()
    except Exception as e:
        logger.debug("Schema version unavailable: %s", e)
        return "unknown"
    return row[0] if row else "unknown"
