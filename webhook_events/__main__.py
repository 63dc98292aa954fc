"""
Run the API server: ``python -m webhook_events``.
"""

import uvicorn

from webhook_events.core.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "webhook_events.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG,
    )
