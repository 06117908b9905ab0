import asyncio
import sys

from pydantic import Field

from asyncproc.core.domain.errors import LauncherError, NonZeroExitError
from asyncproc.core.domain.launcher import ForkLauncher, LauncherConfig
from asyncproc.core.helper.asyncio import AsyncioHelper
from asyncproc.core.helper.config import ConfigHelper
from asyncproc.core.helper.logging import LoggingHelper
from asyncproc.core.helper.os import OsHelper


class CliConfig(LauncherConfig):
    command: str = Field(..., min_length=1, description="shell command to run in a detached process")


def exit_code_for(error: NonZeroExitError) -> int:
    # код, убитого сигналом процесса, отрицательный; наружу отдаём 1
    return error.exit_code if 0 < error.exit_code < 256 else 1


async def simple_run(config: CliConfig) -> int:
    """Запустить команду, дождаться результата и вернуть код выхода CLI"""
    logger = LoggingHelper.getLogger("cli")
    launcher = ForkLauncher(config)

    try:
        process = await launcher.launch(config.command)
    except LauncherError:
        logger.exception("could not launch command")
        return 1

    stop_event = AsyncioHelper.stop_signal()
    stop_task = asyncio.create_task(stop_event.wait())
    result_task = asyncio.ensure_future(process)

    try:
        done, _ = await asyncio.wait(
            {stop_task, result_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if stop_task in done:
            logger.info("received stop signal")
            process.cancel()
    finally:
        stop_task.cancel()
        AsyncioHelper.remove_stop_signal()

    try:
        output = await result_task
    except NonZeroExitError as e:
        if e.output:
            print(e.output)
        logger.error("command exited with code %s", e.exit_code)
        return exit_code_for(e)
    except LauncherError:
        logger.exception("command failed")
        return 1

    if output:
        print(output)

    return 0


def main():
    """Точка входа asyncproc"""
    config = ConfigHelper.load(
        CliConfig,
        config_files=ConfigHelper.typical_config_files(),
        env_prefix="ASYNCPROC_",
        cli_parse_args=sys.argv[1:],
    )

    LoggingHelper.basicConfig(config.log_level, colored=sys.stderr.isatty())

    exit_code = asyncio.run(simple_run(config))

    OsHelper.exit(exit_code)


if __name__ == "__main__":
    main()
