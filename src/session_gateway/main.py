"""Command-line entrypoint that serves the gateway with uvicorn."""

import uvicorn

from session_gateway.api.app import create_app
from session_gateway.config import Settings
from session_gateway.containers import build_container


def main() -> None:
    """Run the gateway HTTP and WebSocket server."""
    settings = Settings()
    app = create_app(build_container(settings))
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
