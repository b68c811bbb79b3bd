# -- coding: utf-8 --

import argparse
import asyncio
import datetime
import json

import aiohttp

_ACTIONS = {
    "capture": ("POST", "/capture"),
    "test-animation": ("POST", "/test-animation"),
    "status": ("GET", "/status"),
    "sources": ("GET", "/sources"),
}


def _format_ts() -> str:
    ts = datetime.datetime.now()
    return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


async def _call(base_url: str, action: str, timeout_s: float) -> int:
    method, path = _ACTIONS[action]
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        print(f"{_format_ts()} {method} {base_url}{path}", flush=True)
        async with session.request(method, base_url + path) as resp:
            body = await resp.json(content_type=None)
            print(f"{_format_ts()} HTTP {resp.status}", flush=True)
            print(json.dumps(body, indent=2, ensure_ascii=False), flush=True)
            return 0 if resp.status // 100 == 2 else 1


def main():
    p = argparse.ArgumentParser(
        description="Trigger a manual capture (or query) on a running service"
    )
    p.add_argument("--host", default="127.0.0.1", help="Overlay server host")
    p.add_argument("--port", type=int, default=3456, help="Overlay server port")
    p.add_argument(
        "--action", default="capture", choices=sorted(_ACTIONS), help="Endpoint to call"
    )
    p.add_argument("--timeout", type=float, default=30.0, help="Request timeout (s)")
    args = p.parse_args()

    base_url = f"http://{args.host}:{args.port}"
    raise SystemExit(asyncio.run(_call(base_url, args.action, args.timeout)))


if __name__ == "__main__":
    main()
