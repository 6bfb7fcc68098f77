import os


def main() -> None:
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8090"))
    uvicorn.run("session_bootstrap.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
