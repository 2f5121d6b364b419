import logging

from app.db.base import Base
from app.db.session import engine
import app.db.models  # noqa: F401

logger = logging.getLogger(__name__)


def init_db(bind=None):
    target = bind if bind is not None else engine
    Base.metadata.create_all(bind=target)
    logger.info("Database schema ensured (%d tables)", len(Base.metadata.tables))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
