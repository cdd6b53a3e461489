import logging
from dotenv import load_dotenv

load_dotenv(override=True)

from qdb.config import load_config
from qdb.core import run_server

def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = load_config()
    run_server(config)

if __name__ == "__main__":
    main()
