# server.py
import html
import logging
from typing import List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from config import Settings
from coordinator import Coordinator
from errors import RelayError
from ingestion import Ingestor
from router import ConnectionPool, ConnectionRouter

logger = logging.getLogger(__name__)

# ---------- Shared UI ----------
BASE_STYLE = """
  body { font-family: Arial, sans-serif; margin: 0; background: #f9f9f9; color: #333; }
  h1 { background: #2196F3; color: white; padding: 15px; margin: 0; }
  h2 { margin-top: 30px; color: #2196F3; }
  .container { padding: 20px; }
  table { border-collapse: collapse; width: 100%; margin-top: 10px; background: white; }
  th, td { border: 1px solid #ddd; padding: 8px; text-align: left; }
  th { background-color: #2196F3; color: white; }
  tr:nth-child(even) { background-color: #f2f2f2; }
  .cards { display: grid; grid-template-columns: repeat(auto-fit,minmax(220px,1fr)); gap: 16px; margin-top: 20px; }
  .card { background: white; border: 1px solid #ddd; border-radius: 6px; padding: 12px; }
  .muted { color: #555; }
  .failed { color: #F44336; }
"""


def page(title: str, body_html: str) -> str:
    return f"""
    <html>
    <head>
      <title>{title}</title>
      <style>{BASE_STYLE}</style>
    </head>
    <body>
      <h1>{title}</h1>
      <div class="container">
        {body_html}
      </div>
    </body>
    </html>
    """


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    pool = ConnectionPool()
    coordinator = Coordinator(pool)
    router = ConnectionRouter(coordinator, pool)
    ingestor = Ingestor(coordinator, admission_policy=settings.admission_policy)

    app = FastAPI(title="taskrelay")
    app.state.settings = settings
    app.state.coordinator = coordinator
    app.state.router = router
    app.state.ingestor = ingestor

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(status_code=400, content={"status": "error", "message": str(exc)})

    # ---------- Ingestion ----------
    @app.post("/api/respond", response_class=JSONResponse)
    async def respond(
        event: Optional[str] = Form(None),
        prices: Optional[str] = Form(None),
        deadlines: Optional[str] = Form(None),
        datasheet: Optional[List[UploadFile]] = File(None),
        confirmation: Optional[List[UploadFile]] = File(None),
    ):
        files = {}
        for role, uploads in (("datasheet", datasheet), ("confirmation", confirmation)):
            files[role] = [(u.filename or "", await u.read()) for u in uploads or []]
        task = ingestor.submit(event, prices, deadlines, files)
        return {"status": "success", "task_id": task.task_id}

    # ---------- State ----------
    @app.get("/api/state", response_class=JSONResponse)
    def state_json():
        return coordinator.snapshot().to_dict()

    @app.get("/", response_class=HTMLResponse)
    def home():
        state = coordinator.snapshot()
        cards = f"""
          <div class="cards">
            <div class="card"><h3>Status</h3><p>{state.status.value}</p></div>
            <div class="card"><h3>Pending</h3><p>{state.pending_count}</p></div>
            <div class="card"><h3>Answered</h3><p>{len(state.history)}</p></div>
          </div>
        """
        pending = "<h2>Pending events</h2>"
        if not state.pending_events:
            pending += "<p class='muted'>Queue is empty.</p>"
        else:
            pending += "<table><tr><th>#</th><th>Event</th></tr>"
            for i, label in enumerate(state.pending_events, start=1):
                pending += f"<tr><td>{i}</td><td>{html.escape(label)}</td></tr>"
            pending += "</table>"

        history = "<h2>History</h2>"
        if not state.history:
            history += "<p class='muted'>No events answered yet.</p>"
        else:
            history += "<table><tr><th>Event</th><th>Result</th></tr>"
            for outcome in reversed(state.history):
                result = "ok" if outcome.success else f"<span class='failed'>{html.escape(outcome.error or 'failed')}</span>"
                history += f"<tr><td>{html.escape(outcome.event)}</td><td>{result}</td></tr>"
            history += "</table>"
        return page("Task Relay", cards + pending + history)

    # ---------- Worker / observer channel ----------
    @app.websocket("/ws")
    async def channel(websocket: WebSocket):
        await router.serve(websocket)

    if settings.static_dir.is_dir():
        app.mount("/static", StaticFiles(directory=str(settings.static_dir), html=True), name="static")
    else:
        logger.debug("Static directory %s not found, not serving a front-end", settings.static_dir)

    return app
