import argparse
import logging
import sys

from agenda.core.app import LOG_FORMAT, AgendaApp


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)
        logging.debug("Basic logging initialized")


def main(argv=None) -> None:
    setup_basic_logging()

    parser = argparse.ArgumentParser(description='Personal Agenda')
    parser.add_argument('--config',
                        help='Path to config file (default: ~/.personal_agenda/config.yaml)')
    parser.add_argument('--host', help='API host (overrides api.host)')
    parser.add_argument('--port', type=int, help='API port (overrides api.port)')
    parser.add_argument('--no-watch', action='store_true', help='Do not reload the config file on change')

    args = parser.parse_args(argv)

    app = AgendaApp.from_config(config_path=args.config, watch=not args.no_watch)
    app.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
