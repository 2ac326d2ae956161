"""
Main entry point for the device jobs agent.
Connects, starts the job loop and runs until SIGTERM/SIGINT.
"""
import asyncio

from device_agent.agent import DeviceAgent
from device_agent.config import AgentConfig
from device_agent.log_setup import logger


async def main(config: AgentConfig) -> int:
    """
    Run the agent until a termination signal arrives.

    Returns:
        int: process exit code (0 after a controlled shutdown, 1 if the session never came up)
    """
    logger.info("Starting device jobs agent")
    logger.info(f"Configuration: {config.describe()}")

    agent = DeviceAgent(config)
    agent.shutdown.install(asyncio.get_running_loop())
    try:
        if not await agent.start():
            logger.error("Could not establish the jobs session; exiting")
            return 1
        logger.info("=" * 60)
        logger.info("Service is ready to receive jobs")
        logger.info("=" * 60)
        await agent.run_until_stopped()
        return 0
    finally:
        await agent.stop()
        agent.shutdown.uninstall()
        logger.info("Application shutdown complete")


def run(config: AgentConfig) -> int:
    return asyncio.run(main(config))
