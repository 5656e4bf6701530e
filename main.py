# main.py
import logging
from storefront.app import StorefrontApp
from storefront.config import Config, setup_logging

def main():
    # Setup logging
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        Config.validate()
        app = StorefrontApp()
        logger.info(f"Starting storefront on {Config.HOST}:{Config.PORT}...")
        app.run()
    except Exception as e:
        logger.error(f"Error starting storefront: {e}", exc_info=True)
        raise

if __name__ == "__main__":
    main()
