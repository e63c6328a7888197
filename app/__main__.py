"""Run the relay with uvicorn: `python -m app`."""

import uvicorn

from app.infra.config import settings


def main() -> None:
    uvicorn.run("app.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
