"""Optimistic todo edits against a local PocketBase server.

Run ``pocketbase serve`` with a ``todos`` collection (title, completed) and a
``users`` auth collection, then:

    python examples/todos.py test@example.com password123
"""

import asyncio
import logging
import sys
import uuid
from datetime import datetime

from pocketsync import (
    CollectionConfig,
    CollectionSync,
    LocalCollection,
    Mutation,
    MutationKind,
    PocketBaseClient,
)

logging.basicConfig(level=logging.INFO)


def parse_timestamp(value: str) -> datetime | str:
    # PocketBase sends "2026-01-02 03:04:05.678Z"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value


async def main(identity: str, password: str) -> None:
    client = PocketBaseClient("http://127.0.0.1:8090")
    await client.auth_with_password(identity, password)

    todos = LocalCollection()
    todos.subscribe(lambda ops: print("todos:", [t["title"] for t in todos.items()]))

    session = CollectionSync(
        client,
        CollectionConfig(name="todos", mutation_timeout_seconds=10),
        to_local={"created": parse_timestamp, "updated": parse_timestamp},
    )
    await session.start(todos)

    # Optimistic insert under a temporary id, replaced once the server confirms
    temp_id = f"temp-{uuid.uuid4()}"
    draft = {"id": temp_id, "title": "Buy groceries", "completed": False}
    todos.insert_optimistic(draft)
    [real_id] = await session.on_insert([Mutation(MutationKind.INSERT, temp_id, modified=draft)])
    print(f"{temp_id} confirmed as {real_id}")

    todos.update_optimistic(real_id, {"completed": True})
    await session.on_update(
        [Mutation(MutationKind.UPDATE, real_id, changes={"completed": True})]
    )

    todos.delete_optimistic(real_id)
    await session.on_delete([Mutation(MutationKind.DELETE, real_id)])

    await session.cancel()
    await client.close()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1], sys.argv[2]))
