"""按方言选择支持 ON CONFLICT DO UPDATE 的 insert 构造器"""
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, table):
    """PostgreSQL 与 SQLite 都支持 ``on_conflict_do_update``"""
    name = session.bind.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"upsert not supported for dialect: {name}")
