"""Minimal demonstration of a streamed chat turn against a running server."""

import asyncio

from chat_core.agents.session_agent import SessionChatAgent
from chat_core.infrastructure.storage.memory_store import InMemorySessionStore
from chat_core.transport.client import ChatStreamClient


async def main() -> None:
    store = InMemorySessionStore()
    session_id = store.create_session("gpt-4o-mini")
    agent = SessionChatAgent(store, ChatStreamClient())

    question = "用一句话介绍一下 Server-Sent Events"
    message_id = await agent.send(session_id, question)
    reply = store.get_message(session_id, message_id)
    print("User:", question)
    print(f"Assistant ({reply.status}):", reply.content)


if __name__ == "__main__":
    asyncio.run(main())
