# main.py: process entry point (uvicorn main:app)
import logging
import os

import uvicorn

from copytrader.config import settings
from copytrader.main import create_app

logging.basicConfig(level=settings.LOG_LEVEL)

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
