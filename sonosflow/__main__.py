import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "sonosflow.main:app",
        host=os.getenv("SONOSFLOW_HOST", "0.0.0.0"),
        port=int(os.getenv("SONOSFLOW_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
