# src/main.py
#
# Entry point: serve the scheduler API with uvicorn.

import uvicorn

from config.settings import API_HOST, API_PORT

if __name__ == "__main__":
    uvicorn.run(
        "src.webapp:app",
        host=API_HOST,
        port=API_PORT,
    )
