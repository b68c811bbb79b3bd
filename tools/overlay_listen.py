# -- coding: utf-8 --

import argparse
import asyncio
import base64
import datetime
import json
import os

import aiohttp


def _format_ts() -> str:
    ts = datetime.datetime.now()
    return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


def _describe(data: dict) -> str:
    parts = []
    for key, value in data.items():
        if key == "imageData":
            parts.append(f"imageData=<{len(str(value))} b64 chars>")
        else:
            parts.append(f"{key}={value!r}")
    return " ".join(parts)


async def _listen(url: str, dump_dir: str):
    async with aiohttp.ClientSession() as session:
        async with session.ws_connect(url) as ws:
            print(f"{_format_ts()} CONNECT {url}", flush=True)
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    continue
                payload = json.loads(msg.data)
                event = payload.get("event", "?")
                data = payload.get("data") or {}
                print(f"{_format_ts()} EVENT {event} {_describe(data)}", flush=True)
                if dump_dir and data.get("imageData"):
                    _dump_image(dump_dir, event, data["imageData"])
    print(f"{_format_ts()} DISCONNECT {url}", flush=True)


def _dump_image(dump_dir: str, event: str, image_b64: str):
    os.makedirs(dump_dir, exist_ok=True)
    ts = datetime.datetime.now()
    path = os.path.join(dump_dir, f"{event}_{ts:%Y%m%d_%H%M%S_%f}.png")
    with open(path, "wb") as f:
        f.write(base64.b64decode(image_b64))
    print(f"{_format_ts()} SAVED {path}", flush=True)


def main():
    p = argparse.ArgumentParser(
        description="Connect to the overlay websocket and print pushed events"
    )
    p.add_argument("--host", default="127.0.0.1", help="Overlay server host")
    p.add_argument("--port", type=int, default=3456, help="Overlay server port")
    p.add_argument("--dump-dir", default="", help="Save received images here")
    args = p.parse_args()

    url = f"ws://{args.host}:{args.port}/ws"
    try:
        asyncio.run(_listen(url, args.dump_dir))
    except KeyboardInterrupt:
        print(f"{_format_ts()} Stopped", flush=True)


if __name__ == "__main__":
    main()
