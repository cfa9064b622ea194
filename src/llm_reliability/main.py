"""Entrypoint: run the LLM Reliability Core server."""

import uvicorn

from llm_reliability.api.app import create_app
from llm_reliability.config.settings import Settings


def main() -> None:
    settings = Settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
