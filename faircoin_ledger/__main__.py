"""Entry point for the periodic scheduler"""
import argparse
import json
import logging
import sys
import traceback

from faircoin_ledger.config import settings
from faircoin_ledger.db import db
from faircoin_ledger.engine import FairCoinEngine

logging.basicConfig(level=settings.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

def run(argv=None) -> None:
    """Initialize the database and run scheduler cycles."""
    parser = argparse.ArgumentParser(description="FairCoin ledger scheduler")
    parser.add_argument('--once', action='store_true', help="Run a single cycle and exit")
    args = parser.parse_args(argv)

    try:
        db.init()

        # Log config (excluding sensitive data)
        safe_config = settings.model_dump(mode='json', exclude={'DB_PASSWORD', 'DATABASE_URL'})
        logger.info("Using configuration:")
        logger.info(json.dumps(safe_config, indent=2))

        engine = FairCoinEngine(db, settings)
        if args.once:
            report = engine.scheduler.run_cycle()
            logger.info(f"Cycle complete: {report.model_dump_json()}")
            if not report.ok:
                sys.exit(1)
            return

        engine.scheduler.run_forever()

    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.error(f"Error while running scheduler: {e}")
        traceback.print_exc()
        sys.exit(1)
    finally:
        db.dispose()

if __name__ == "__main__":
    run()
