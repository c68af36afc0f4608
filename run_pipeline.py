import asyncio
import sys

from antique_ingest.config import load_settings
from antique_ingest.pipeline import main


if __name__ == "__main__":
    print("Running antique listing pipeline (collect -> images -> analysis)...")
    sys.exit(asyncio.run(main(load_settings())))
