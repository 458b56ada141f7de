import argparse
import logging
import os
import uvicorn
from .api import create_app
from .config import DEFAULT_CONFIG_PATH, load_settings


def main(argv=None):
    parser = argparse.ArgumentParser(description="File system view over a S3 bucket")
    parser.add_argument("--config-path", default=None,
                        help=f"path to config file (default: {DEFAULT_CONFIG_PATH}, when present)")
    args = parser.parse_args(argv)

    config_path = args.config_path
    if config_path is None and os.path.exists(DEFAULT_CONFIG_PATH):
        config_path = DEFAULT_CONFIG_PATH
    settings = load_settings(config_path)
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app = create_app(settings)
    logging.info(f"Serving files of bucket {settings.bucket} on {settings.bind_addr}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
