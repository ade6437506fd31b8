#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Mock analysis backend - answers signage frames with fake detection results.

Serves the WebSocket endpoint on ws://localhost:8000/ws so a screen can be run
end to end without the real detection service.
"""

import asyncio
import json
import random
import time
from datetime import datetime

import websockets

ADS = ["man", "multiple", "female", "fashion", "neutral"]
EMOTIONS = ["happy", "neutral", "sad", "surprise", "angry"]


def pick_ad(people):
    """Very rough stand-in for the backend's targeting policy."""
    if not people:
        return "neutral"
    genders = {person["gender"] for person in people}
    if genders == {"male"}:
        return "man" if len(people) == 1 else "multiple"
    if genders == {"female"}:
        return "female" if len(people) == 1 else "fashion"
    return "neutral"


def generate_mock_result(frame_number):
    """Build one fake analysis result."""
    num_people = random.randint(0, 4)
    people = [
        {
            "id": f"person_{i + 1}",
            "gender": random.choice(["male", "female"]),
            "age": random.randint(16, 70),
            "emotion": random.choice(EMOTIONS),
            "confidence": round(random.uniform(0.6, 0.99), 3),
            "bbox": [random.randint(0, 400), random.randint(0, 300), 120, 240],
        }
        for i in range(num_people)
    ]
    return {
        "frame_number": frame_number,
        "people_count": num_people,
        "tracked_people": people,
        "current_ad": pick_ad(people),
        "timestamp": datetime.now().isoformat(),
    }


async def handle_screen(websocket):
    frame_number = 0
    await websocket.send(json.dumps({
        "type": "connection",
        "data": {"message": "mock backend ready", "current_ad": "neutral", "camera_running": False},
    }))
    print("Screen connected")

    async for raw in websocket:
        try:
            message = json.loads(raw)
        except ValueError:
            await websocket.send(json.dumps({"type": "error", "data": {"error": "invalid JSON"}}))
            continue

        if message.get("type") == "heartbeat":
            await websocket.send(json.dumps({"type": "heartbeat_ack", "data": {}}))
        elif message.get("type") == "frame":
            started = time.perf_counter()
            frame_number += 1
            result = generate_mock_result(frame_number)
            await asyncio.sleep(random.uniform(0.01, 0.08))
            elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
            result["processing_time_ms"] = elapsed_ms
            await websocket.send(json.dumps({
                "type": "frame_processed",
                "data": {"result": result, "processing_time_ms": elapsed_ms, "frame_number": frame_number},
            }))
            print(f"Frame #{frame_number} from {message.get('data', {}).get('screen_id')}: "
                  f"{result['people_count']} people -> {result['current_ad']}")
    print("Screen disconnected")


async def main(host="localhost", port=8000):
    async with websockets.serve(handle_screen, host, port, max_size=None):
        print(f"Mock backend listening on ws://{host}:{port}/ws")
        await asyncio.Future()


if __name__ == "__main__":
    print("Press Ctrl+C to stop")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nMock backend stopped")
