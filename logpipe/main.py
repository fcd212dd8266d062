"""logpipe entry point: pipes stdin to journald and/or a rotated log file."""

import logging
import sys

from logpipe.config import PipelineConfig, load_config
from logpipe.errors import FatalError, ValidationError
from logpipe.file_sink import RotatingFileSink
from logpipe.journal import JournalSocket
from logpipe.pipeline import FdReader, PipelineLoop
from logpipe.privileges import drop_privileges
from logpipe.rotator import RotationState, Rotator
from logpipe.splitter import LineSplitter
from logpipe.structured_sink import StructuredSink

logger = logging.getLogger(__name__)

EXIT_FATAL = 1
EXIT_INVALID = 2


def build_pipeline(config: PipelineConfig, read, backend=None, invoker=None) -> PipelineLoop:
    """Wire the sinks selected by *config* into a PipelineLoop.

    *backend* replaces the journal socket and *invoker* the logrotate
    subprocess runner; both default to the real ones.
    """
    structured_sink = None
    if config.structured_enabled:
        structured_sink = StructuredSink(backend or JournalSocket(config.journal_socket),
                                         config.labels)

    file_sink = None
    if config.file_enabled:
        state = RotationState(leading_path=config.leading_file_path, max_size=config.max_size)
        rotator = Rotator(
            tool_path=config.rotation_tool_path,
            max_files=config.max_files,
            options=config.rotation_options,
            invoker=invoker,
        )
        file_sink = RotatingFileSink(state, rotator)

    return PipelineLoop(
        read,
        splitter=LineSplitter(config.max_line_length),
        structured_sink=structured_sink,
        file_sink=file_sink,
    )


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [logpipe] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(argv)
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_INVALID

    logging.getLogger().setLevel(config.log_level)
    logger.info("Starting logpipe: destination=%s, labels=%d, leading_file=%s",
                config.destination, len(config.labels), config.leading_file_path)

    if config.run_as_user:
        try:
            drop_privileges(config.run_as_user)
        except ValidationError as exc:
            logger.error("Invalid configuration: %s", exc)
            return EXIT_INVALID
        except FatalError as exc:
            logger.error("%s", exc)
            return EXIT_FATAL

    reader = FdReader(sys.stdin.fileno())
    try:
        outcome = build_pipeline(config, reader).run()
    finally:
        reader.close()

    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
