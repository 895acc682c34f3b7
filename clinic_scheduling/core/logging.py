import logging
from contextvars import ContextVar
from .config import settings

# attach the batch run id to log records (the engine has no requests of its own)
run_id_ctx: ContextVar[str] = ContextVar("run_id", default="-")

def _install_record_factory():
    old_factory = logging.getLogRecordFactory()
    if getattr(old_factory, "_run_id_aware", False):
        return
    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.run_id = run_id_ctx.get()
        return record
    record_factory._run_id_aware = True
    logging.setLogRecordFactory(record_factory)

def setup_logging():
    _install_record_factory()
    level = logging.DEBUG if settings.ENV == "local" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s [%(run_id)s] %(message)s",
    )
