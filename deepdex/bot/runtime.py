import asyncio
import logging
import signal

from deepdex.strategies import StrategyContext, StrategyRunner

logger = logging.getLogger("deepdex.bot")


class Runtime:
    """Run one strategy until it returns or a termination signal arrives."""

    def __init__(self, runner: StrategyRunner, context: StrategyContext):
        self.runner = runner
        self.context = context
        self.running = False

    async def start(self) -> None:
        self.running = True
        logger.info(
            "Strategy %s starting for account %s", self.context.strategy, self.context.account
        )

        # Register signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self.stop)
        except NotImplementedError:
            # Windows ProactorEventLoop does not support add_signal_handler
            logger.warning("Signal handlers not supported on this platform (likely Windows).")

        runner_task = asyncio.create_task(self.runner(self.context))
        shutdown_task = asyncio.create_task(self.context.shutdown_event.wait())
        try:
            done, _ = await asyncio.wait(
                {runner_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if runner_task in done:
                # Surface runner exceptions to the worker exit code.
                runner_task.result()
            else:
                logger.info("Shutdown requested; waiting for strategy to finish...")
                await runner_task
        except asyncio.CancelledError:
            logger.info("Strategy run loop cancelled.")
        finally:
            shutdown_task.cancel()
            self.running = False
            logger.info("Strategy %s stopped.", self.context.strategy)

    def stop(self) -> None:
        logger.info("Stopping strategy...")
        self.context.shutdown_event.set()
