"""
Transcript Processor Worker.

Picks up stopped recording sessions and runs the appointment pipeline
over each transcript: extraction, validation, contextual commit. Every
session ends up ``processed`` with the outcome recorded, except when
the model is unreachable; those stay ``stopped`` for the next poll.

Sessions must live in a shared store, so run with SESSION_BACKEND=redis.

Start with:
    python -m src.workers.transcript_processor
"""

from __future__ import annotations

import asyncio
import signal

from dotenv import load_dotenv
load_dotenv(".env.local")

from src.config import SessionBackend, get_settings
from src.errors import ExtractionUnavailable, IntakeError, InvalidSessionState
from src.logging_config import generate_trace_id, get_logger, setup_logging, trace_id_var
from src.services.intake_pipeline import IntakePipeline, build_pipeline
from src.services.session_manager import close_session_store

setup_logging()
logger = get_logger(__name__)

# How often to check for stopped sessions (seconds)
POLL_INTERVAL = 10.0
# Gap between sessions within one batch
BATCH_GAP = 0.5


class TranscriptProcessorWorker:
    """
    Polls for stopped sessions and processes them one at a time.

    Flow:
    1. List sessions in state 'stopped'
    2. Extract the appointment from the transcript
    3. Commit it against the consultation's patient and dentist
    4. Mark the session 'processed' with the commit outcome
    """

    def __init__(self, pipeline: IntakePipeline | None = None, poll_interval: float = POLL_INTERVAL) -> None:
        self._pipeline = pipeline
        self._running = False
        self.poll_interval = poll_interval

    async def start(self) -> None:
        if self._pipeline is None:
            self._pipeline = await build_pipeline()
        self._running = True

        if get_settings().session_backend != SessionBackend.REDIS:
            logger.warning("transcript_processor_local_sessions_only")
        logger.info("transcript_processor_started", poll_interval=self.poll_interval)

        while self._running:
            try:
                processed = await self.process_pending()
                await asyncio.sleep(BATCH_GAP if processed else self.poll_interval)
            except Exception as e:
                logger.error("transcript_processor_error", error=str(e))
                await asyncio.sleep(self.poll_interval)

    async def stop(self) -> None:
        self._running = False
        logger.info("transcript_processor_stopped")

    async def process_pending(self) -> int:
        """
        Process every currently stopped session.

        Returns the number of sessions that reached ``processed``.
        """
        pipeline = self._pipeline
        if pipeline is None:
            raise RuntimeError("TranscriptProcessorWorker not started")

        done = 0
        for session in await pipeline.sessions.list_stopped():
            token = trace_id_var.set(generate_trace_id())
            try:
                outcome = await pipeline.process_session(session.id)
                done += 1
                logger.info(
                    "session_pipeline_complete",
                    session_id=session.id,
                    outcome=outcome.commit.outcome.value,
                )
            except ExtractionUnavailable as e:
                # Provider is down; the rest of the batch would fail the same way.
                logger.warning("session_pipeline_deferred", session_id=session.id, error=e.message)
                break
            except InvalidSessionState as e:
                # Claimed or finished by another processor since it was listed.
                logger.info("session_pipeline_skipped", session_id=session.id, error=e.message)
            except IntakeError as e:
                done += 1
                logger.info("session_pipeline_failed", session_id=session.id, kind=e.kind, error=e.message)
            finally:
                trace_id_var.reset(token)
        return done


async def main() -> None:
    worker = TranscriptProcessorWorker()

    loop = asyncio.get_running_loop()

    def shutdown_handler() -> None:
        logger.info("shutdown_signal_received")
        asyncio.ensure_future(worker.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_handler)
        except NotImplementedError:
            pass

    try:
        await worker.start()
    except KeyboardInterrupt:
        await worker.stop()
    finally:
        await close_session_store()


if __name__ == "__main__":
    asyncio.run(main())
