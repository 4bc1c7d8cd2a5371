#!/usr/bin/env python3

##############################################
#                                            #
#         AIGO REACT CHAT AGENT              #
#                                            #
##############################################

import argparse
import asyncio
from typing import Any, Dict, List

from dotenv import load_dotenv

from aigo.chat_agent import ChatAgent, flatten_transcript
from aigo.prebuilt import build_default_agent
from utils.cli import StepPrinter, read_user_goal
from utils.load_config import load_config

from utils.logger import get_logger, init_logger
logger = get_logger(__name__)


async def chat_once(agent: ChatAgent, message: str, history: List[Dict[str, Any]], printer: StepPrinter) -> None:
    publisher = agent.stream(message, history)
    async for chunk in publisher.publish():
        for line in chunk.decode("utf-8").splitlines():
            printer.feed(line)
    printer.flush()

    if publisher.terminal_state is not None:
        history[:] = [
            m for m in flatten_transcript(publisher.terminal_state)
            if m["role"] in ("user", "assistant") and m["content"]
        ]


def repl(agent: ChatAgent) -> None:
    logger.info("🤖 Agent started. Ask a question to get started…")
    printer = StepPrinter()
    history: List[Dict[str, Any]] = []

    while True:
        message = None
        try:
            message = read_user_goal()
            if not message:  # Skip empty inputs
                continue

            asyncio.run(chat_once(agent, message, history, printer))

        except KeyboardInterrupt:
            logger.info("🤖 Bye!")
            break

        except Exception as exc:
            logger.exception("chat_failed", message=message, error=str(exc))


def serve(agent: ChatAgent, host: str, port: int) -> None:
    import uvicorn
    from aigo.api.app import create_app

    logger.info("server_starting", host=host, port=port)
    uvicorn.run(create_app(agent), host=host, port=port, log_config=None)


def main() -> None:
    parser = argparse.ArgumentParser(description="AIGO ReAct chat agent")
    parser.add_argument("command", nargs="?", choices=["chat", "serve"], default="chat")
    parser.add_argument("--config", default=None, help="Path to config.toml")
    args = parser.parse_args()

    init_logger("config.json")
    load_dotenv()

    config = load_config(args.config)
    agent = build_default_agent(config)

    if args.command == "serve":
        serve(agent, config.server.host, config.server.port)
    else:
        repl(agent)


if __name__ == "__main__":
    main()
