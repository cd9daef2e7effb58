"""
The Royal Court Herald
======================

A Discord server-management bot: a direct-message modmail relay between
members and staff, server event logging, and the slash commands that
configure both.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. HERALD_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("HERALD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
from datetime import datetime, timezone

import discord
from dotenv import load_dotenv

from herald.configuration.app_configuration import app_config
from herald.configuration.guild_settings import guild_settings_manager
from herald.database.database import get_db
from herald.datatypes.modmail_datatypes import CloseReason
from herald.modmail.modmail_service import ModmailService
from herald.util.logger import get_logger, handle_exception, handle_loop_exception

logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Returns
    -------
    str
        Discord bot token extracted from the loaded environment.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Construct the Discord intents required by the Herald.

    Returns
    -------
    discord.Intents
        Intents enabling guild, member, message, voice state and DM events.
    """
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    intents.messages = True
    intents.message_content = True
    intents.voice_states = True
    intents.dm_messages = True
    return intents


def load_cogs(discord_bot_instance: discord.Bot, modmail_service: ModmailService) -> None:
    """Register all operational cogs with the provided Discord bot instance.

    Parameters
    ----------
    discord_bot_instance:
        Py-Cord bot object that should receive the cogs.
    modmail_service:
        The single modmail service shared by the modmail cogs.
    """
    from herald.bot.cogs import (
        direct_message_listener,
        events_listener,
        general_cmds,
        logging_cmds,
        modmail_cmds,
        server_logs_listener,
    )

    events_listener.setup(discord_bot_instance)
    direct_message_listener.setup(discord_bot_instance, modmail_service)
    modmail_cmds.setup(discord_bot_instance, modmail_service)
    logging_cmds.setup(discord_bot_instance, modmail_service)
    server_logs_listener.setup(discord_bot_instance)
    general_cmds.setup(discord_bot_instance)

    logger.info("All cogs loaded successfully.")


def create_bot() -> tuple[discord.Bot, ModmailService]:
    """Instantiate the Discord bot, the modmail service, and register all cogs."""
    bot = discord.Bot(intents=build_intents())
    modmail_service = ModmailService(
        bot,
        settings_manager=guild_settings_manager,
        config=app_config,
        history=get_db(),
    )
    load_cogs(bot, modmail_service)
    return bot, modmail_service


async def start_bot(bot: discord.Bot, token: str) -> None:
    """Start the Discord bot and handle lifecycle logging around the connection.

    Parameters
    ----------
    bot:
        Discord client to start.
    token:
        Authentication token used to connect to Discord.
    """
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot | None = None, modmail_service: ModmailService | None = None) -> None:
    """Gracefully stop modmail, the guild settings manager, the database and the bot.

    Parameters
    ----------
    bot:
        Optional bot instance to close after the subsystems.
    modmail_service:
        Optional modmail service whose timers and threads should be wound down.
    """
    if modmail_service is not None:
        try:
            await modmail_service.shutdown()
        except Exception as exc:
            logger.exception("Error during modmail shutdown: %s", exc)

    try:
        await guild_settings_manager.shutdown()
    except Exception as exc:
        logger.exception("Error during guild settings shutdown: %s", exc)

    try:
        await get_db().shutdown()
    except Exception as exc:
        logger.exception("Error during database shutdown: %s", exc)

    if bot is not None and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the database, the bot and the modmail service, returning an exit code.

    Returns
    -------
    int
        Process exit code reflecting success or failure of initialization.
    """
    asyncio.get_running_loop().set_exception_handler(handle_loop_exception)
    token = load_environment()

    try:
        logger.info("Initializing database and loading guild settings...")
        await guild_settings_manager.async_init()
        await get_db().close_dangling_threads(datetime.now(timezone.utc), CloseReason.SHUTDOWN.value)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    try:
        bot, modmail_service = create_bot()
    except Exception as exc:
        logger.critical("Failed to initialize Discord bot: %s", exc)
        await shutdown_runtime()
        return 1

    exit_code = 0
    try:
        await start_bot(bot, token)
    except discord.LoginFailure as exc:
        logger.critical("Discord rejected the bot token: %s", exc)
        exit_code = 1
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, modmail_service)

    return exit_code


def main() -> int:
    """Entrypoint that orchestrates the async runtime and returns the process code.

    Returns
    -------
    int
        Exit code propagated to the operating system.
    """
    sys.excepthook = handle_exception
    logger.info(f"Starting {app_config.bot_name}…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        if code is None:
            return 1
        try:
            return int(code)
        except (ValueError, TypeError):
            logger.warning("SystemExit.code is not an int (%r); defaulting to 1", code)
            return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    print(f"Exited with code: {main()}")
