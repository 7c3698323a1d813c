from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from demogen.db import DATABASE_URL
from demogen.models import Base


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

targetMetadata = Base.metadata

# SQLite は ALTER TABLE の対応が限られるため、バッチモードで移行する
renderAsBatch = DATABASE_URL.startswith("sqlite")


def runMigrationsOffline() -> None:
    """目的: DBへ接続せずに、マイグレーションSQLを出力する。"""
    context.configure(
        url=DATABASE_URL,
        target_metadata=targetMetadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=renderAsBatch,
    )

    with context.begin_transaction():
        context.run_migrations()


def runMigrationsOnline() -> None:
    """目的: DATABASE_URL のDBへ接続して、user_properties のマイグレーションを適用する。"""
    configuration = config.get_section(config.config_ini_section) or {}
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=targetMetadata,
            compare_type=True,
            render_as_batch=renderAsBatch,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    runMigrationsOffline()
else:
    runMigrationsOnline()
