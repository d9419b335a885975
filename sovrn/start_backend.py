#!/usr/bin/env python3
"""Run the Sovrn API with uvicorn: python -m sovrn.start_backend [--host H] [--port P]"""
import argparse
import os

import uvicorn


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Serve the Sovrn marketplace API.")
    parser.add_argument("--host", default=os.getenv("SOVRN_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("SOVRN_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    args = parser.parse_args(argv)

    print(f"[Backend] Serving Sovrn on http://{args.host}:{args.port}")
    uvicorn.run("sovrn.main:app", host=args.host, port=args.port, reload=args.reload, log_level="info")


if __name__ == "__main__":
    main()
