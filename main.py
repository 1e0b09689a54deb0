from fastapi import Depends, FastAPI, Query, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from dotenv import load_dotenv
from fastapi_mcp import FastApiMCP
from pymongo.database import Database
import logging
import os

from auth import load_user
from medical import router as medical_router
from mongo import get_db
from notifications import NotificationHub

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

app = FastAPI(title="Maternal Care API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.notifier = NotificationHub()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request, exc):
    # Only the first problem is reported; request bodies may carry clinical data
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid {location}: {first.get('msg', 'bad value')}" if location else "Invalid request"
    return JSONResponse(status_code=400, content={"message": message})


app.include_router(medical_router)


@app.get("/")
def read_root():
    return {"message": "Maternal Care API running"}


@app.websocket("/ws")
async def notifications_socket(websocket: WebSocket, token: str = Query(None), db: Database = Depends(get_db)):
    """Joins the authenticated user to the channel named by their id."""
    try:
        user = load_user(db, token)
    except HTTPException as e:
        logging.warning(f"Rejected socket connection: {e.detail}")
        await websocket.close(code=1008)
        return

    notifier = websocket.app.state.notifier
    channel = str(user["_id"])
    await notifier.connect(channel, websocket)
    try:
        while True:
            # Clients only listen; incoming frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        notifier.disconnect(channel, websocket)


mcp = FastApiMCP(app, include_operations=[
    "get_dashboard",
    "get_patient_details",
    "get_patients",
    "get_appointments",
    "create_appointment",
    "update_appointment",
    "add_patient_notes",
    "add_medication",
    "get_analytics",
])
mcp.mount()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
