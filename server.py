import argparse

import uvicorn  # type: ignore

from app.utils import get_logger

log = get_logger(__name__)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the access control API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--no-reload", action="store_true", help="disable auto-reload")
    args = parser.parse_args()

    log.info("Running access control server on %s:%d", args.host, args.port)
    uvicorn.run("app.main:app", reload=not args.no_reload, host=args.host, port=args.port)
