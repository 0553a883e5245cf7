"""Tool coordinator server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    # 127.0.0.1 keeps the operational endpoints off the network unless API_HOST says otherwise.
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting tool coordinator on {host}:{port}")
    uvicorn.run("coordinator.main:create_app", factory=True, host=host, port=port, reload=debug)
