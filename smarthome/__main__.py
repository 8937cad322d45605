"""Run the bridge with uvicorn: python -m smarthome"""
import uvicorn

from smarthome.core.config import settings


def main():
    uvicorn.run("smarthome.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
