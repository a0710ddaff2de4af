"""secretshare entrypoint.

Run with:
  python -m secretshare
"""

import logging

import uvicorn

from secretshare.config import load_config


def main() -> None:
    cfg = load_config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "secretshare.app:create_app",
        factory=True,
        host=cfg.host,
        port=cfg.port,
        reload=cfg.reload,
    )

if __name__ == "__main__":
    main()
