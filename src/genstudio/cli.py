"""
Interactive terminal front end for GenStudio.

Anything typed that does not start with "/" is sent as a prompt in the
current mode. Type /help for the command list.
"""
from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Optional

from genstudio.assets import AssetLibrary, AssetLocks
from genstudio.client import BackendClient, BackendError
from genstudio.config import load_config
from genstudio.events import AssetEventBus, Notice
from genstudio.models import Avatar, GenerationMode, Message, VideoSubMode
from genstudio.orchestrator import Orchestrator
from genstudio.plan import PlanTransitionError, describe_plan, describe_results
from genstudio.staging import MediaRejected

HELP = """\
Commands:
  /mode <auto|text|image|video|plan> [sub_mode]   switch generation mode
  /model <model_id>           set the video model
  /aspect <16:9|9:16>         set the video aspect ratio
  /resolution <720p|1080p>    set the video resolution
  /attach <path>              stage an image
  /detach <media_id>          remove a staged image
  /extend <asset_id>          extend a generated video
  /plan                       show the plan under review
  /edit                       start editing the plan
  /set <scene_id> <field> <value>   edit a scene field
  /cancel                     discard plan edits
  /build                      build the plan
  /like <asset_id>            toggle like on an asset
  /download <asset_id>        record a download
  /library [query]            list saved assets
  /open <conversation_id>     open a conversation
  /new                        start a new conversation
  /recent                     list recent conversations
  /avatars                    list avatars
  /avatar <avatar_id|none>    select the active avatar
  /cost                       show the session cost
  /quit                       exit
"""


def print_notice(notice: Notice) -> None:
    marker = "!" if notice.is_error else "*"
    text = f"{notice.title}: {notice.description}" if notice.description else notice.title
    print(f"{marker} {text}")


def format_message(message: Message) -> str:
    lines = [f"{message.role.value}> {message.content}"]
    for asset in message.assets or []:
        liked = " (liked)" if asset.liked else ""
        lines.append(f"    [{asset.type}] {asset.id} {asset.url}{liked}")
    if message.execution_plan is not None:
        if message.scene_results:
            lines.extend(
                f"    {line}" for line in describe_results(message.execution_plan, message.scene_results)
            )
        else:
            lines.extend(f"    {line}" for line in describe_plan(message.execution_plan))
    if message.usage is not None:
        lines.append(f"    {message.usage.total_tokens} tokens")
    if message.cost is not None:
        lines.append(f"    ${message.cost.total_cost:.6f}")
    return "\n".join(lines)


class ChatSession:
    """State for one terminal session."""

    def __init__(self, orchestrator: Orchestrator, library: AssetLibrary):
        self.orchestrator = orchestrator
        self.library = library
        self.avatar: Optional[Avatar] = None
        self.avatars: list[Avatar] = []

    def active_avatar(self) -> Optional[Avatar]:
        return self.avatar

    async def handle(self, line: str) -> bool:
        """Run one input line; returns False to exit."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            message = await self.orchestrator.send_message(line)
            if message is not None:
                print(format_message(message))
            return True

        parts = shlex.split(line)
        command, args = parts[0][1:], parts[1:]
        if command in ("quit", "exit"):
            return False
        handler = getattr(self, f"cmd_{command}", None)
        if handler is None:
            print(f"Unknown command /{command}. Type /help.")
            return True
        try:
            inspect.signature(handler).bind(*args)
        except TypeError:
            print(f"Wrong arguments for /{command}. Type /help.")
            return True
        try:
            result = handler(*args)
            if asyncio.iscoroutine(result):
                await result
        except MediaRejected as exc:
            print_notice(Notice(exc.title, exc.description, "destructive"))
        except (ValueError, KeyError, PlanTransitionError, BackendError) as exc:
            print(f"! {exc}")
        return True

    def cmd_help(self) -> None:
        print(HELP)

    def cmd_mode(self, mode: str, sub_mode: Optional[str] = None) -> None:
        self.orchestrator.modes.set_mode(
            GenerationMode(mode), VideoSubMode(sub_mode) if sub_mode else None
        )
        print(f"Mode: {self.orchestrator.modes.label}")

    def cmd_model(self, model: str) -> None:
        self.orchestrator.modes.set_video_params(model=model)

    def cmd_aspect(self, aspect_ratio: str) -> None:
        self.orchestrator.modes.set_video_params(aspect_ratio=aspect_ratio)

    def cmd_resolution(self, resolution: str) -> None:
        self.orchestrator.modes.set_video_params(resolution=resolution)

    def cmd_attach(self, path: str) -> None:
        modes = self.orchestrator.modes
        item = modes.staging.add_file(Path(path), modes.mode, modes.video_sub_mode)
        print(f"Staged {item.id} {item.label or ''}".rstrip())

    def cmd_detach(self, media_id: str) -> None:
        if not self.orchestrator.modes.detach(media_id):
            print(f"No staged image {media_id}.")

    def cmd_extend(self, asset_id: str) -> None:
        self.orchestrator.extend_video(asset_id)

    def cmd_plan(self) -> None:
        review = self.orchestrator.review_plan()
        print(f"Plan ({review.state.value})")
        for line in describe_plan(review.current):
            print(f"  {line}")

    def cmd_edit(self) -> None:
        self.orchestrator.review_plan().begin_edit()
        self.cmd_plan()

    def cmd_set(self, scene_id: str, field_name: str, value: str) -> None:
        scene = self.orchestrator.review_plan().update_scene(scene_id, **{field_name: value})
        print(f"[{scene.id}] mode={scene.mode.value} model={scene.model or '-'}")

    def cmd_cancel(self) -> None:
        self.orchestrator.review_plan().cancel_edit()

    async def cmd_build(self) -> None:
        message = await self.orchestrator.build_plan(self.orchestrator.review_plan())
        if message is not None:
            print(format_message(message))

    async def cmd_like(self, asset_id: str) -> None:
        await self.orchestrator.like_asset(asset_id)

    async def cmd_download(self, asset_id: str) -> None:
        count = await self.orchestrator.download_asset(asset_id)
        if count is not None:
            print(f"{asset_id}: {count} downloads")

    async def cmd_library(self, query: str = "") -> None:
        await self.library.refresh()
        for asset in self.library.filtered(query):
            liked = " (liked)" if asset.liked else ""
            print(f"  [{asset.type}] {asset.id} {asset.downloads} downloads{liked}  {asset.prompt or ''}")

    async def cmd_open(self, conversation_id: str) -> None:
        if await self.orchestrator.open_conversation(conversation_id):
            for message in self.orchestrator.transcript:
                print(format_message(message))

    def cmd_new(self) -> None:
        self.orchestrator.new_conversation()
        for message in self.orchestrator.transcript:
            print(format_message(message))

    async def cmd_recent(self) -> None:
        for item in await self.orchestrator.backend.list_recent_conversations():
            print(f"  {item.get('id')}  {item.get('title') or ''}")

    async def cmd_avatars(self) -> None:
        self.avatars = await self.orchestrator.load_avatars()
        for avatar in self.avatars:
            default = " (default)" if avatar.is_default else ""
            print(f"  {avatar.id}  {avatar.name}{default}")

    def cmd_avatar(self, avatar_id: str) -> None:
        if avatar_id == "none":
            self.avatar = None
            return
        for avatar in self.avatars:
            if avatar.id == avatar_id:
                self.avatar = avatar
                return
        raise KeyError(f"Unknown avatar {avatar_id}; run /avatars first.")

    def cmd_cost(self) -> None:
        cost = self.orchestrator.transcript.session_cost
        if cost is None:
            print("No usage yet.")
        else:
            print(f"{cost.total_tokens} tokens, {cost.currency} ${cost.total_cost:.6f}")


async def run(args: argparse.Namespace) -> int:
    config = load_config(api_base_url=args.api_base)
    token = args.token or os.environ.get("GENSTUDIO_ACCESS_TOKEN")
    backend = BackendClient(config, token_provider=lambda: token)
    bus = AssetEventBus()
    locks = AssetLocks()
    library = AssetLibrary(backend, bus, config=config, notify=print_notice, locks=locks)
    orchestrator = Orchestrator(
        backend,
        config=config,
        notify=print_notice,
        bus=bus,
        locks=locks,
        on_conversation_changed=lambda cid: print(f"* Conversation {cid}"),
    )
    session = ChatSession(orchestrator, library)
    orchestrator.avatar_provider = session.active_avatar

    if args.conversation:
        await session.cmd_open(args.conversation)
    else:
        for message in orchestrator.transcript:
            print(format_message(message))

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, f"[{orchestrator.modes.label}] ")
            except EOFError:
                break
            if not await session.handle(line):
                break
    finally:
        orchestrator.close()
        library.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Chat with the GenStudio generation backend.")
    parser.add_argument("--api-base", help="Backend base URL (default: GENSTUDIO_API_BASE_URL).")
    parser.add_argument("--token", help="Bearer token (default: GENSTUDIO_ACCESS_TOKEN).")
    parser.add_argument("--conversation", help="Open an existing conversation id.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
