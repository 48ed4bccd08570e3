import uvicorn

from approval_engine.config import settings


def main():
    """Serve the API with uvicorn (``python -m approval_engine``)."""
    uvicorn.run(
        "approval_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
    )


if __name__ == "__main__":
    main()
