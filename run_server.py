import os

import uvicorn

if __name__ == "__main__":
    host = os.environ.get("VARIORUM_HOST", "0.0.0.0")
    port = int(os.environ.get("VARIORUM_PORT", "8000"))

    print("Starting Variorum Resolver API Server...")
    print(f"Docs available at: http://localhost:{port}/docs")

    uvicorn.run(
        "variorum.api.server:app",
        host=host,
        port=port,
        reload=True
    )
