import asyncio
import json
import uuid
import websockets  # to install: pip install websockets

async def main():
    uri = "ws://localhost:8000/ws?topics=orders,users/123"
    async with websockets.connect(uri) as ws:
        hello = json.loads(await ws.recv())
        print("Connected as:", hello["connection_id"])

        # subscribe to one more topic after connecting
        sub = {"type": "subscribe", "topics": ["invoices"], "request_id": str(uuid.uuid4())}
        await ws.send(json.dumps(sub))

        print("Awaiting messages... (press Ctrl+C to exit)")
        while True:
            msg = await ws.recv()
            print("Received:", msg)

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
