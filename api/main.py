"""
Action Hub API - Extensible delivery hub

Single FastAPI application:
- /actions: Action discovery, forms, execution and OAuth (routes/actions.py)
- /health: Liveness
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Configure logging - ensure INFO level logs are visible
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from fastapi import FastAPI

from routes import actions

app = FastAPI(
    title="Action Hub",
    description="Delivers caller payloads to registered destination actions",
    version="1.0.0",
)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}


# Mount routers
app.include_router(actions.router, tags=["actions"])


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
