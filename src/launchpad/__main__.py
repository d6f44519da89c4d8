import os

import uvicorn


def main():
    host = os.getenv("LAUNCHPAD_HOST", "0.0.0.0")
    port = int(os.getenv("LAUNCHPAD_PORT", "8000"))
    uvicorn.run("launchpad.app:app", host=host, port=port, lifespan="on")


if __name__ == "__main__":
    main()
