from __future__ import annotations

import argparse
import asyncio

from aiortc.contrib.media import MediaPlayer

from app.core.logging import configure_logging
from app.core.settings import get_settings
from app.rtc.aiortc_peer import AiortcPeerConnection
from app.rtc.negotiation import MediaTrack, NegotiationRole, NegotiationState, NegotiationStateMachine
from app.rtc.signaling_client import SignalingClient


class PlayerMediaSource:
    def __init__(self, path: str):
        self._path = path

    async def acquire(self) -> list[MediaTrack]:
        player = MediaPlayer(self._path)
        return [t for t in (player.audio, player.video) if t is not None]


async def main() -> None:
    parser = argparse.ArgumentParser(description="Run one side of a call through the signaling relay.")
    parser.add_argument("--api-url", default="http://localhost:3001/api")
    parser.add_argument("--room", required=True)
    parser.add_argument("--role", choices=[r.value for r in NegotiationRole], required=True)
    parser.add_argument("--play", default=None, help="Media file or device to send.")
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for the connection.")
    parser.add_argument("--hold", type=float, default=10.0, help="Seconds to stay connected.")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    peer = AiortcPeerConnection()
    if args.play is None and args.role == NegotiationRole.initiator.value:
        # Without media an offer has no m-line to gather candidates for.
        peer.pc.createDataChannel("probe")

    async with SignalingClient(args.api_url) as signaling:
        machine = NegotiationStateMachine(
            role=args.role,
            room_id=args.room,
            peer=peer,
            signaling=signaling,
            media=PlayerMediaSource(args.play) if args.play else None,
            poll_interval=settings.signaling_poll_interval_seconds,
        )
        try:
            await machine.start()
            state = await machine.wait_for(
                NegotiationState.active,
                NegotiationState.terminated,
                timeout=args.timeout,
            )
            print(f"Negotiation finished: state={state.value} candidates={machine.applied_candidates}")
            if state is NegotiationState.active:
                await asyncio.sleep(args.hold)
        except asyncio.TimeoutError:
            print(f"Timed out in state={machine.state.value}")
        finally:
            await machine.terminate()


if __name__ == "__main__":
    asyncio.run(main())
