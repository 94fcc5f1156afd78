"""Command line entrypoint that serves the gateway with uvicorn."""

import uvicorn

from wpp_gateway.api.app import create_app
from wpp_gateway.config import Settings
from wpp_gateway.containers import build_container


def main() -> None:  # pragma: no cover - CLI entrypoint
    settings = Settings()
    app = create_app(build_container(settings))
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":  # pragma: no cover
    main()
