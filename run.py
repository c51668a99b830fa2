#  Agent Watch - Entry Point
#
#  Launches the FastAPI server via uvicorn.
#
#  Depends on: agentwatch/app.py, agentwatch/config.py, agentwatch/logging_config.py
#  Used by:    (run directly)

import uvicorn

from agentwatch.config import HOST, PORT, cfg
from agentwatch.logging_config import setup_logging


def main():
    setup_logging(
        level=cfg("server.log_level", "INFO"),
        fmt=cfg("server.log_format", "json"),
    )

    uvicorn.run(
        "agentwatch.app:app",
        host=HOST,
        port=PORT,
        reload=cfg("server.reload", False),
    )


if __name__ == "__main__":
    main()
