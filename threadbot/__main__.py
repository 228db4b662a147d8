import uvicorn

from threadbot.config import get_settings
from threadbot.main import create_app


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
