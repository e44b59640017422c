import sys
from typing import Optional, Sequence

from .config import parse_args
from .filler import generate_filler
from .log import configure_logging, get_logger
from .server import EXIT_OK, run

logger = get_logger()


def main(argv: Optional[Sequence[str]] = None) -> int:
    # stderr diagnostics must work before the configured level is known
    configure_logging()
    settings = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(settings.log_level)

    filler = generate_filler(settings.padding_bytes)
    logger.debug("Generated %d bytes of filler text", len(filler))
    try:
        return run(settings, filler)
    except KeyboardInterrupt:
        print("\nShutting down.")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
