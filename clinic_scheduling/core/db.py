from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def init_models():
    ## In dev-only "create_all" mode create tables directly; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        from .base import Base
        # register every mapped table on the metadata
        from clinic_scheduling.modules.directory import models as _directory  # noqa: F401
        from clinic_scheduling.modules.blocks import models as _blocks  # noqa: F401
        from clinic_scheduling.modules.appointments import models as _appointments  # noqa: F401
        from clinic_scheduling.modules.events import outbox as _outbox  # noqa: F401
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
