"""Manual smoke check against a running server: join, then print pushed events.

    python ws_demo.py alice <jwt>
"""
import asyncio
import json
import sys

import websockets


async def main(user_id: str, token: str = "") -> None:
    url = "ws://localhost:8000/ws" + (f"?token={token}" if token else "")
    async with websockets.connect(url) as ws:
        print(f"Connected: {await ws.recv()}")

        await ws.send(json.dumps({"type": "join", "userId": user_id}))

        # 收到的事件原样打印
        async for raw in ws:
            print(f"Received: {raw}")


if __name__ == "__main__":
    asyncio.run(main(*sys.argv[1:3]))
