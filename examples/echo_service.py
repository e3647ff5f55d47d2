"""
Disposable test backend for trying portless locally.

Answers every path with a greeting that names its port, and echoes
WebSocket messages back.

Usage:
    PORT=4001 python examples/echo_service.py

Or from portless.json:
    "echo": {"cwd": "./examples", "command": "python echo_service.py"}
"""

import os

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

PORT = int(os.getenv("PORT", "3000"))

app = FastAPI(title="portless echo service")


@app.websocket("/{full_path:path}")
async def echo_ws(websocket: WebSocket, full_path: str):
    await websocket.accept()
    try:
        while True:
            message = await websocket.receive_text()
            await websocket.send_text(f"echo: {message}")
    except WebSocketDisconnect:
        pass


@app.api_route("/{full_path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
async def hello(request: Request, full_path: str):
    body = await request.body()
    lines = [
        f"Hello from test service on port {PORT}",
        f"Requested: {request.method} {request.url.path}",
    ]
    if body:
        lines.append(f"Body: {body.decode('utf-8', errors='replace')}")
    return PlainTextResponse("\n".join(lines))


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=PORT)
