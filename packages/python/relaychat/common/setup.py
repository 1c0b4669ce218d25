import logging
import os

from dotenv import load_dotenv


def setup() -> None:
    """Read the .env file and configure logging."""
    load_dotenv(override=False)
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # litellm is chatty at INFO
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
