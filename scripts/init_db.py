# scripts/init_db.py

import logging

from utilitrack.db.engine import build_engine
from utilitrack.db.schema import create_schema, metadata

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    engine = build_engine()
    metadata.drop_all(engine)
    create_schema(engine)
    logger.info("DB schema created at %s", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    main()
