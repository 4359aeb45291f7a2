# run_server.py
import uvicorn

from crm.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "crm.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.ENV == "dev",
        log_level="debug" if settings.DEBUG else "info",
    )
