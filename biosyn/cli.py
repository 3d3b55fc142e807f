"""
Command line entry point.

Sub-commands:
- analyze:  text symptoms -> report JSON on stdout
- speak:    one-shot narration through the default output device
- dictate:  live dictation for a fixed duration, prints the transcript

Configuration comes from the environment (AppConfig.load_from_env).
Audio devices are imported lazily so `analyze` runs without PortAudio.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from biosyn.adapters.live.base import LiveSessionParams
from biosyn.adapters.live.gemini_live import GeminiLiveChannel
from biosyn.adapters.oracle.openai_oracle import OpenAIOracle
from biosyn.adapters.oracle.prompts import LIVE_INTAKE_INSTRUCTION_V1, SpeechTone
from biosyn.audio.capture import AudioCaptureStream
from biosyn.config import AppConfig
from biosyn.constants import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES
from biosyn.errors import PerceptionError, classify_error
from biosyn.narration.narrator import NarratorState, ReportAudioNarrator
from biosyn.perception.analysis import SymptomAnalyzer
from biosyn.perception.report import SymptomInput
from biosyn.session.dictation import LiveDictationSession
from biosyn.sync.connectivity import ConnectivityMonitor

_PLAYBACK_POLL_S = 0.1


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

async def _analyze(config: AppConfig, args: argparse.Namespace) -> int:
    analyzer = SymptomAnalyzer(OpenAIOracle.from_config(config), ConnectivityMonitor())
    report = await analyzer.analyze(
        SymptomInput(
            description=args.description,
            duration=args.duration,
            age=args.age,
            gender=args.gender,
            medical_history=args.history,
            language=args.language,
        )
    )
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0


async def _speak(config: AppConfig, args: argparse.Namespace) -> int:
    from biosyn.audio.devices import SoundDeviceOutputClock  # pylint: disable=import-outside-toplevel

    narrator = ReportAudioNarrator(
        OpenAIOracle.from_config(config),
        SoundDeviceOutputClock.factory(),
        voice=config.tts_voice,
    )
    tone = SpeechTone(args.tone) if args.tone else None
    await narrator.speak(args.text, tone=tone, voice=args.voice)

    while narrator.state is not NarratorState.IDLE:
        await asyncio.sleep(_PLAYBACK_POLL_S)
    await narrator.stop()

    if args.save:
        path = narrator.export_wav(args.save)
        print(f"saved {path}")
    return 0


async def _dictate(config: AppConfig, args: argparse.Namespace) -> int:
    # pylint: disable=import-outside-toplevel
    from biosyn.audio.devices import MicrophoneDevice, SoundDeviceOutputClock

    session = LiveDictationSession(
        GeminiLiveChannel(
            api_key=config.gemini_api_key,
            model=config.live_model,
            endpoint=config.live_endpoint,
        ),
        AudioCaptureStream(MicrophoneDevice()),
        SoundDeviceOutputClock.factory(),
        LiveSessionParams(
            language=args.language,
            voice=config.live_voice,
            system_instruction=LIVE_INTAKE_INSTRUCTION_V1.format(language=args.language),
        ),
    )

    await session.start()
    try:
        await asyncio.wait_for(session.wait_closed(), timeout=args.seconds)
    except asyncio.TimeoutError:
        pass
    finally:
        await session.stop()

    print(session.transcript)
    if session.failure is not None:
        raise session.failure
    return 0


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="biosyn", description="BioSyn perception core")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="analyze symptoms and print the report")
    analyze.add_argument("description")
    analyze.add_argument("--duration", default="unknown")
    analyze.add_argument("--age", type=int, required=True)
    analyze.add_argument("--gender", default="unspecified")
    analyze.add_argument("--history", default="")
    analyze.add_argument("--language", default=DEFAULT_LANGUAGE, choices=SUPPORTED_LANGUAGES)

    speak = sub.add_parser("speak", help="narrate text once")
    speak.add_argument("text")
    speak.add_argument("--voice")
    speak.add_argument("--tone", choices=[t.value for t in SpeechTone])
    speak.add_argument("--save", help="write the synthesized audio to this WAV path")

    dictate = sub.add_parser("dictate", help="live dictation, prints the transcript")
    dictate.add_argument("--seconds", type=float, default=30.0)
    dictate.add_argument("--language", default=DEFAULT_LANGUAGE, choices=SUPPORTED_LANGUAGES)

    return parser


_COMMANDS = {
    "analyze": _analyze,
    "speak": _speak,
    "dictate": _dictate,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig.load_from_env()

    try:
        return asyncio.run(_COMMANDS[args.command](config, args))
    except PerceptionError as e:
        print(str(classify_error(e)), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
