"""
LiveKit worker for the voice-commerce pipeline.

Groq Whisper (STT) and Silero (VAD) feed the recognition engine; there is no
LLM in the loop. Commands are resolved by the pattern grammar and answered
through Google Cloud TTS when an API key is configured.

Run: python -m voice_commerce.agent dev
"""

import os
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv
from livekit.agents import Agent, AgentSession, AutoSubscribe, JobContext, WorkerOptions, cli
from livekit.plugins import groq, silero

from logging_setup import get_logger, Component, setup_logging

from .config import get_config
from .livekit_bridge import AgentSessionPlayer, DataChannelNavigator, LiveKitRecognizerBackend, build_dispatch_context
from .pipeline import build_pipeline

# Local dev convenience; never overrides variables already exported.
root = Path(__file__).parent.parent
for name in (".env_local", ".env.local"):
    p = root / name
    if p.exists():
        load_dotenv(p, override=False)

logger = get_logger(Component.LIVEKIT_TRANSPORT)

_VAD = None


async def entrypoint(ctx: JobContext):
    await ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)
    participant = await ctx.wait_for_participant()

    dispatch = build_dispatch_context(
        room_name=ctx.room.name or "unknown",
        job_metadata=getattr(ctx.job, "metadata", None),
        participant_attributes=getattr(participant, "attributes", None),
    )
    session_logger = logger.with_session(dispatch.session_id)
    ctx.log_context_fields = {"room_name": ctx.room.name, "session_id": dispatch.session_id}

    config = get_config()
    if dispatch.device_id:
        config = replace(config, device_id=dispatch.device_id)

    session = AgentSession(
        stt=groq.STT(
            model=config.groq_stt_model,
            language=(dispatch.language or config.default_language).split("-")[0],
            api_key=config.groq_api_key,
        ),
        vad=_VAD or silero.VAD.load(),
        allow_interruptions=False,
    )

    backend = LiveKitRecognizerBackend()
    backend.attach(session)
    pipeline = build_pipeline(
        config,
        session_id=dispatch.session_id,
        navigator=DataChannelNavigator(ctx.room),
        player=AgentSessionPlayer(session, sample_rate=config.google_tts_sample_rate),
        backend=backend,
    )
    await pipeline.preferences.load()
    if dispatch.language:
        pipeline.preferences.set_language(dispatch.language)

    ctx.add_shutdown_callback(pipeline.aclose)

    await session.start(room=ctx.room, agent=Agent(instructions=""))
    session_logger.info("Voice commerce session started", language=pipeline.language)

    await pipeline.start_listening()


def prewarm(_process):
    """Load Silero once per worker process."""
    global _VAD
    _VAD = silero.VAD.load()


if __name__ == "__main__":
    setup_logging(level=os.getenv("LOG_LEVEL", "INFO"), use_json=True)
    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            prewarm_fnc=prewarm,
            agent_name=os.getenv("LIVEKIT_AGENT_NAME", ""),
        )
    )
